"""Abstract base class for the blob storage that keeps uploaded bytes."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   LocalContentStorage: files under a local upload directory
#   ForgeContentStorage: remote storage proxy over httpx
# Located in: ragcore/providers/storage/
class IContentStorage(ABC):
    """Contract for storing and reading back uploaded document bytes.

    Implementations do not retry.  Callers wrap every call in their own
    timeout.
    """

    @abstractmethod
    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        """Store *data* under *key* and return an opaque content reference.

        Raises
        ------
        ragcore.utils.errors.StorageUnavailableError
            If the backend cannot store the bytes.
        """

    @abstractmethod
    async def get(self, content_ref: str) -> bytes:
        """Return the bytes previously stored under *content_ref*.

        Raises
        ------
        ragcore.utils.errors.StorageUnavailableError
            If the backend cannot return the bytes.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` if the backend is reachable and writable."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this backend."""

    async def close(self) -> None:
        """Release network resources.  No-op by default."""
