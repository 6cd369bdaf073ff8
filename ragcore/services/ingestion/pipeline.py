"""The ingestion pipeline: bytes -> text -> chunks -> vectors -> stored chunks.

:meth:`IngestionPipeline.run` is the one pipeline shared by inline
ingestion and queue workers.  It does not touch document status; it
returns a terminal :class:`~ragcore.models.rag.PipelineOutcome` and the
orchestrator applies the matching transition.  Ingestion failures are
returned, not raised:

    ==========================  ===================  =========
    cause                       reason code          retryable
    ==========================  ===================  =========
    no extractor for MIME type  unsupported_format   no
    corrupt / undecodable       extraction_error     no
    no text after extraction    empty_extraction     no
    chunker produced nothing    no_chunks            no
    document deleted mid-run    document_deleted     no
    embedding retries spent     embedding_failed     yes
    stored bytes unreadable     storage_unavailable  yes
    chunk write failed          vector_store_error   yes
    ==========================  ===================  =========
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import structlog

from ragcore.models.document import DocumentStatus
from ragcore.models.rag import ChunkRecord, PipelineOutcome
from ragcore.utils.errors import (
    DocumentNotFoundError,
    EmbeddingProviderError,
    EmptyContentError,
    ExtractionError,
    StorageUnavailableError,
    UnsupportedFormatError,
    VectorStoreError,
)
from ragcore.utils.text_normalizer import normalize_text

if TYPE_CHECKING:
    from ragcore.interfaces.content_storage import IContentStorage
    from ragcore.interfaces.document_repository import IDocumentRepository
    from ragcore.interfaces.text_extractor import ITextExtractor
    from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
    from ragcore.services.ingestion.chunker import TextChunker
    from ragcore.services.ingestion.embedding_client import EmbeddingClient

logger = structlog.get_logger(logger_name=__name__)

# Decoded directly; everything else goes to the text extractor.
PLAIN_TEXT_MIME_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/x-markdown",
        "text/csv",
        "text/html",
        "application/json",
    }
)


def is_plain_text(mime_type: str) -> bool:
    base = mime_type.split(";", 1)[0].strip().lower()
    return base in PLAIN_TEXT_MIME_TYPES or base.startswith("text/")


def decode_plain_text(data: bytes) -> str:
    """Decode UTF-8 text (a leading BOM is dropped)."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ExtractionError(message=f"Text is not valid UTF-8: {exc}") from exc


def _failed(reason: str, retryable: bool = False) -> PipelineOutcome:
    return PipelineOutcome(status=DocumentStatus.FAILED, failure_reason=reason, retryable=retryable)


class IngestionPipeline:
    """Runs extraction, chunking, embedding and persistence for one document."""

    def __init__(
        self,
        documents: IDocumentRepository,
        vector_store: IVectorStoreProvider,
        storage: IContentStorage,
        extractor: ITextExtractor,
        chunker: TextChunker,
        embedding_client: EmbeddingClient,
        storage_timeout: float = 20.0,
    ) -> None:
        self._documents = documents
        self._vector_store = vector_store
        self._storage = storage
        self._extractor = extractor
        self._chunker = chunker
        self._embedding_client = embedding_client
        self._storage_timeout = storage_timeout

    async def run(self, document_id: int, content: bytes | None = None) -> PipelineOutcome:
        """Ingest one document and return how the attempt ended.

        Parameters
        ----------
        document_id:
            The document to ingest.
        content:
            The document bytes when the caller still has them (inline
            ingestion).  Otherwise they are fetched from content storage.
        """
        start = time.monotonic()
        document = await self._documents.get_document(document_id)
        if document is None:
            return _failed("document_deleted: record no longer exists")

        log = logger.bind(document_id=document_id, mime_type=document.mime_type)

        # Step 1: bytes
        if content is None:
            try:
                content = await asyncio.wait_for(
                    self._storage.get(document.content_ref), timeout=self._storage_timeout
                )
            except (StorageUnavailableError, asyncio.TimeoutError) as exc:
                log.warning("pipeline_fetch_failed", error=str(exc) or type(exc).__name__)
                return _failed(f"storage_unavailable: {str(exc) or 'timed out'}", retryable=True)

        # Step 2: text
        try:
            text = await self._extract(content, document.mime_type)
        except UnsupportedFormatError as exc:
            log.warning("pipeline_unsupported_format", error=exc.message)
            return _failed(f"unsupported_format: {exc.message}")
        except EmptyContentError as exc:
            log.warning("pipeline_empty_extraction")
            return _failed(f"empty_extraction: {exc.message}")
        except ExtractionError as exc:
            log.warning("pipeline_extraction_failed", error=exc.message)
            return _failed(f"extraction_error: {exc.message}")

        # Step 3: chunks
        chunks = self._chunker.chunk(text)
        if not chunks:
            log.warning("pipeline_no_chunks", text_length=len(text))
            return _failed("no_chunks: chunking produced no chunks")

        # Step 4: vectors
        try:
            vectors = await self._embedding_client.embed_batch(chunks)
        except EmbeddingProviderError as exc:
            log.error("pipeline_embedding_failed", error=str(exc))
            return _failed(f"embedding_failed: {exc.message}", retryable=True)

        # Step 5: persist, all or nothing
        records = [
            ChunkRecord(chunk_index=i, content=chunk, vector=vector)
            for i, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]
        try:
            stored = await self._vector_store.append_chunks(document_id, records)
        except DocumentNotFoundError:
            log.warning("pipeline_document_deleted")
            return _failed("document_deleted: removed before chunks were stored")
        except VectorStoreError as exc:
            log.error("pipeline_store_failed", error=exc.message)
            return _failed(f"vector_store_error: {exc.message}", retryable=True)

        log.info(
            "pipeline_completed",
            chunks=stored,
            text_length=len(text),
            elapsed_s=round(time.monotonic() - start, 3),
        )
        return PipelineOutcome(status=DocumentStatus.COMPLETED, chunk_count=stored)

    async def _extract(self, content: bytes, mime_type: str) -> str:
        if is_plain_text(mime_type):
            raw = decode_plain_text(content)
        elif self._extractor.supports(mime_type):
            raw = await self._extractor.extract(content, mime_type)
        else:
            raise UnsupportedFormatError(message=f"No text extractor for MIME type {mime_type!r}")

        text = normalize_text(raw)
        if not text:
            raise EmptyContentError(message="Extraction produced no text")
        return text
