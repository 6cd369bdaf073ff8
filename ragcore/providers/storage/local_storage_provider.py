"""Local filesystem content storage.

Writes uploads under ``upload_dir`` and hands back ``/uploads/{key}``
references, the same shape the HTTP layer would serve them under.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from pathlib import Path, PurePosixPath

import structlog

from ragcore.interfaces.content_storage import IContentStorage
from ragcore.utils.errors import StorageUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_REF_PREFIX = "/uploads/"


class LocalContentStorage(IContentStorage):
    """Stores document bytes as files below a root directory."""

    def __init__(self, upload_dir: str | Path) -> None:
        self._root = Path(upload_dir)

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        path = self._resolve(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            raise StorageUnavailableError(
                message=f"Could not write {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ref = _REF_PREFIX + self._normalize_key(key)
        logger.info("content_stored", ref=ref, size=len(data), mime_type=mime_type)
        return ref

    async def get(self, content_ref: str) -> bytes:
        if not content_ref.startswith(_REF_PREFIX):
            raise StorageUnavailableError(
                message=f"Not a local content reference: {content_ref}",
                provider_name=self.get_provider_name(),
            )
        path = self._resolve(content_ref[len(_REF_PREFIX):])
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageUnavailableError(
                message=f"Could not read {content_ref}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self._root, os.W_OK)

    def get_provider_name(self) -> str:
        return "local_storage"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_key(key: str) -> str:
        return key.lstrip("/")

    def _resolve(self, key: str) -> Path:
        relative = PurePosixPath(self._normalize_key(key))
        if not relative.parts or ".." in relative.parts:
            raise StorageUnavailableError(
                message=f"Invalid storage key: {key!r}",
                provider_name=self.get_provider_name(),
            )
        return self._root.joinpath(*relative.parts)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.part")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)
