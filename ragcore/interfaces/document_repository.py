"""Abstract base class for document and collection records."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.document import Collection, Document, DocumentStatus


# Concrete implementations:
#   SQLiteDocumentStore: aiosqlite, shares its database file with SQLiteVectorStore
# Located in: ragcore/providers/document_store/
class IDocumentRepository(ABC):
    """Contract for persisting documents, collections and document status."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create backing tables if they do not exist."""

    # -- Collections ----------------------------------------------------

    @abstractmethod
    async def create_collection(
        self,
        name: str,
        org_slug: str,
        description: str = "",
    ) -> Collection:
        """Create a collection, or return the existing one with the same ``(name, org_slug)``."""

    @abstractmethod
    async def get_collection(self, collection_id: int) -> Collection | None:
        """Return a collection by id."""

    @abstractmethod
    async def get_collection_by_name(self, name: str, org_slug: str) -> Collection | None:
        """Return a collection by its unique ``(name, org_slug)`` pair."""

    @abstractmethod
    async def list_collections(self, org_slug: str) -> list[Collection]:
        """Return all collections of a tenant, oldest first."""

    # -- Documents ------------------------------------------------------

    @abstractmethod
    async def create_document(
        self,
        name: str,
        mime_type: str,
        content_ref: str,
        org_slug: str,
        collection_id: int | None = None,
        status: DocumentStatus = DocumentStatus.PENDING,
    ) -> Document:
        """Insert a document record and return it with its assigned id."""

    @abstractmethod
    async def get_document(self, document_id: int) -> Document | None:
        """Return a document by id."""

    @abstractmethod
    async def list_documents(self, collection_id: int) -> list[Document]:
        """Return the documents of a collection, oldest first."""

    @abstractmethod
    async def count_documents(self, collection_id: int) -> int:
        """Return how many documents a collection holds."""

    @abstractmethod
    async def update_status(
        self,
        document_id: int,
        status: DocumentStatus,
        expected: DocumentStatus | None = None,
        failure_reason: str | None = None,
    ) -> Document:
        """Set a document's status and failure reason.

        When *expected* is given the update is a compare-and-set: it only
        applies if the stored status still equals *expected*.

        Raises
        ------
        ragcore.utils.errors.DocumentNotFoundError
            If the document does not exist.
        ragcore.utils.errors.InvalidStatusTransitionError
            If *expected* no longer matches the stored status.
        """

    @abstractmethod
    async def delete_document(self, document_id: int) -> bool:
        """Delete the document record.  Returns ``False`` if it did not exist.

        Chunks must already have been removed through the vector store.
        """
