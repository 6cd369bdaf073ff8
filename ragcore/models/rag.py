"""RAG data models: chunk records, search hits, and ingestion outcomes.

Ingestion produces :class:`ChunkRecord` objects (index, text, vector) for one
document; the vector store hands them back as :class:`StoredChunk` rows
tagged with their owning document; retrieval ranks those into
:class:`SearchHit` results.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.document import DocumentStatus


# ---------------------------------------------------------------------------
# Chunk records
# ---------------------------------------------------------------------------
class ChunkRecord(BaseModel):
    """One chunk of a document, ready to be appended to the vector store."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0, description="Dense 0-based position within the document.")
    content: str = Field(description="The chunk's trimmed text.")
    vector: list[float] = Field(description="Embedding of ``content``.")


class StoredChunk(BaseModel):
    """A chunk record as loaded back from the vector store."""

    model_config = ConfigDict(frozen=True)

    document_id: int
    chunk_index: int
    content: str
    vector: list[float]


class SearchHit(BaseModel):
    """A ranked retrieval result."""

    model_config = ConfigDict(frozen=True)

    content: str
    score: float = Field(description="Cosine similarity between the query and this chunk.")
    document_id: int
    chunk_index: int = 0


# ---------------------------------------------------------------------------
# Ingestion results
# ---------------------------------------------------------------------------
class IngestReceipt(BaseModel):
    """What the caller of ``ingest`` gets back: the id to poll and the status so far."""

    model_config = ConfigDict(frozen=True)

    document_id: int
    status: DocumentStatus


class PipelineOutcome(BaseModel):
    """Terminal result of one run of the ingestion pipeline.

    ``retryable`` tells the queue worker whether another job attempt could
    succeed: transient provider and storage failures are retryable, input
    errors (unsupported, corrupt, empty) are not.
    """

    model_config = ConfigDict(frozen=True)

    status: DocumentStatus
    chunk_count: int = 0
    failure_reason: str | None = None
    retryable: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == DocumentStatus.COMPLETED
