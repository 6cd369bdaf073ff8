"""Document and collection models.

A :class:`Document` is one uploaded file moving through the ingestion state
machine; a :class:`Collection` groups documents so retrieval can be scoped.
All models are frozen -- status changes are written to the document store
and re-read, never mutated in place.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# DocumentStatus: lifecycle of one ingestion attempt.
# ---------------------------------------------------------------------------
class DocumentStatus(str, Enum):  # noqa: UP042 (StrEnum needs Python 3.11+)
    """Lifecycle states of a document.

        PENDING -> QUEUED -> PROCESSING -> COMPLETED
               \\-------------^        \\-> FAILED -> PROCESSING (retry)

    ``queued`` only exists in queue mode, between enqueue and worker pickup.
    """

    PENDING = "pending"        # Record created, no execution decision yet
    QUEUED = "queued"          # Waiting for a worker
    PROCESSING = "processing"  # Extract -> chunk -> embed -> persist running
    COMPLETED = "completed"    # Every chunk has a stored vector
    FAILED = "failed"          # Attempt ended; see failure_reason

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class Collection(BaseModel):
    """A named grouping of documents, unique per organization."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = Field(description="Collection name, unique within org_slug.")
    description: str = ""
    org_slug: str = Field(description="Tenant scope of the collection.")
    created_at: datetime
    updated_at: datetime


class Document(BaseModel):
    """An uploaded document and its ingestion status."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = Field(description="Display name, usually the uploaded file name.")
    mime_type: str
    content_ref: str = Field(
        description="Opaque reference returned by the content storage boundary.",
    )
    collection_id: int | None = None
    org_slug: str
    status: DocumentStatus = DocumentStatus.PENDING
    failure_reason: str | None = Field(
        default=None,
        description="Why the last attempt failed; cleared when processing restarts.",
    )
    created_at: datetime
    updated_at: datetime
