"""Abstract base class for chunk/vector persistence.

The vector store holds one row per (document, chunk index) with the chunk
text and its embedding.  It is append-only per document: ingestion writes a
document's full chunk set as a unit and deletion removes it en masse.

There is deliberately no "load everything" method -- every read is scoped
to a set of collection ids so retrieval cannot leak chunks across tenants.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.rag import ChunkRecord, StoredChunk


# Concrete implementations:
#   SQLiteVectorStore: aiosqlite, vectors stored as JSON text
# Located in: ragcore/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for storing and loading embedded chunks."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create backing tables if they do not exist."""

    @abstractmethod
    async def append_chunks(self, document_id: int, chunks: list[ChunkRecord]) -> int:
        """Persist the full chunk set of one document atomically.

        Either every chunk becomes visible to readers or none does.  A
        previous chunk set for the same document is replaced, so re-running
        ingestion for a document is idempotent.

        Parameters
        ----------
        document_id:
            Owning document.  Must still exist when the write commits.
        chunks:
            Records with dense ``chunk_index`` values ``0..n-1``.

        Returns
        -------
        int
            Number of chunk rows written.

        Raises
        ------
        ragcore.utils.errors.DocumentNotFoundError
            If the document was deleted before the write committed.
        ragcore.utils.errors.VectorStoreError
            On gaps in ``chunk_index``, a vector dimension that differs from
            the store's, or a storage failure.
        """

    @abstractmethod
    async def load_chunks_for_collections(
        self,
        collection_ids: list[int],
        org_slug: str | None = None,
    ) -> list[StoredChunk]:
        """Return every chunk whose owning document is in *collection_ids*.

        When *org_slug* is given, documents of other tenants are excluded
        even if a collection id matches.  Results are ordered by document id,
        then chunk index.  An empty id list returns an empty list.
        """

    @abstractmethod
    async def delete_chunks_for_document(self, document_id: int) -> int:
        """Delete all chunks of a document.  Returns the number removed."""

    @abstractmethod
    async def count_chunks(self, document_id: int) -> int:
        """Return the number of stored chunks for a document."""

    @abstractmethod
    async def get_dimension(self) -> int | None:
        """Return the store-wide vector dimension, ``None`` while empty."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
