"""ragcore domain models: re-exports all public model classes."""

from ragcore.models.document import Collection, Document, DocumentStatus
from ragcore.models.job import IngestJob, JobOptions
from ragcore.models.rag import (
    ChunkRecord,
    IngestReceipt,
    PipelineOutcome,
    SearchHit,
    StoredChunk,
)

__all__ = [
    "ChunkRecord",
    "Collection",
    "Document",
    "DocumentStatus",
    "IngestJob",
    "IngestReceipt",
    "JobOptions",
    "PipelineOutcome",
    "SearchHit",
    "StoredChunk",
]
