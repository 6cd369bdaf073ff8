"""Pydantic request/response schemas for the ragcore API.

Request schemas end with ``Request``, response schemas with ``Response``.
Upload requests are multipart forms and have no request schema.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ragcore.models.document import DocumentStatus


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None


class IngestResponse(BaseModel):
    """Returned by an upload: the id to poll and the status reached so far."""

    document_id: int
    status: DocumentStatus


class DocumentResponse(BaseModel):
    id: int
    name: str
    mime_type: str
    collection_id: int | None = None
    org_slug: str
    status: DocumentStatus
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class CreateCollectionRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    org_slug: str = Field(..., min_length=1)
    description: str = ""


class CollectionResponse(BaseModel):
    id: int
    name: str
    description: str = ""
    org_slug: str
    created_at: datetime


class CollectionListResponse(BaseModel):
    collections: list[CollectionResponse] = Field(default_factory=list)
    total: int = 0


class SearchRequest(BaseModel):
    """A similarity search over the given collections."""

    query: str = Field(..., max_length=8000)
    collection_ids: list[int] = Field(default_factory=list)
    top_k: int | None = Field(default=None, ge=1, le=100)
    org_slug: str | None = None
    include_context: bool = Field(
        default=False,
        description="Also return the hits formatted as an LLM prompt block.",
    )


class SearchHitResponse(BaseModel):
    content: str
    score: float
    document_id: int
    chunk_index: int


class SearchResponse(BaseModel):
    results: list[SearchHitResponse] = Field(default_factory=list)
    total: int = 0
    context: str | None = None


class HealthResponse(BaseModel):
    """Per-dependency probe results; ``ok`` is true when all are healthy."""

    ok: bool
    storage: str
    embeddings: str
    queue: str | None = None
    env: dict[str, str | int] = Field(default_factory=dict)
