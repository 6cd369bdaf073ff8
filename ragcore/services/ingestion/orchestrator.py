"""Ingestion orchestrator -- owns the document status state machine.

Control flow for one upload::

    ingest(name, bytes, mime, collection_id, org_slug)
      1. precondition: collection exists for the tenant and is below capacity
      2. content storage put (own timeout)         -> StorageUnavailableError, nothing persisted
      3. document record created as ``pending``
      4a. inline mode: pending -> processing -> run pipeline under the
          inline timeout -> completed | failed
      4b. queue mode:  pending -> queued -> enqueue job
          enqueue fails -> queued -> processing -> run inline (same timeout)

Queue workers call :meth:`IngestionOrchestrator.process_queued`, which
applies the same transitions around the same
:class:`~ragcore.services.ingestion.pipeline.IngestionPipeline`.  Once a
document record exists, every failure ends up as ``failed`` plus a reason
on the record; callers poll the status rather than catching exceptions.
"""

from __future__ import annotations

import asyncio
import re
import time
import uuid
from typing import TYPE_CHECKING

import structlog

from ragcore.models.document import Document, DocumentStatus
from ragcore.models.job import JobOptions
from ragcore.models.rag import IngestReceipt, PipelineOutcome
from ragcore.services.ingestion import status as state_machine
from ragcore.utils.errors import (
    CollectionCapacityError,
    CollectionNotFoundError,
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    QueueUnavailableError,
    StorageUnavailableError,
    VectorStoreError,
)

if TYPE_CHECKING:
    from ragcore.interfaces.content_storage import IContentStorage
    from ragcore.interfaces.document_repository import IDocumentRepository
    from ragcore.interfaces.job_queue import IJobQueue
    from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
    from ragcore.services.ingestion.pipeline import IngestionPipeline

logger = structlog.get_logger(logger_name=__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def build_storage_key(
    org_slug: str, name: str, now: float | None = None, token: str | None = None
) -> str:
    """Return ``orgs/{org}/uploads/{epoch_ms}-{token}-{name}`` with unsafe characters replaced.

    *token* defaults to eight random hex digits, so same-named uploads in
    the same millisecond still get distinct keys.
    """
    timestamp_ms = int((now if now is not None else time.time()) * 1000)
    unique = token if token is not None else uuid.uuid4().hex[:8]
    safe_org = _UNSAFE_KEY_CHARS.sub("_", org_slug) or "default"
    safe_name = _UNSAFE_KEY_CHARS.sub("_", name).strip("._") or "document"
    return f"orgs/{safe_org}/uploads/{timestamp_ms}-{unique}-{safe_name}"


class IngestionOrchestrator:
    """Creates documents, picks the execution path, and records outcomes.

    Parameters
    ----------
    documents:
        Document/collection repository.
    vector_store:
        Chunk store; used for cleanup on failure and on delete.
    storage:
        Content storage for uploaded bytes.
    pipeline:
        The shared extract -> chunk -> embed -> persist pipeline.
    queue:
        Job queue, required in ``"queue"`` mode.
    mode:
        ``"inline"`` or ``"queue"``; fixed for the deployment.
    inline_timeout:
        Wall-clock budget (seconds) for inline runs and manual retries.
    job_timeout:
        Wall-clock budget (seconds) for one queued job attempt.
    storage_timeout:
        Budget (seconds) for the storage ``put`` of an upload.
    max_files_per_collection:
        Upload is rejected once a collection holds this many documents.
    job_options:
        Attempts and backoff submitted with every job.
    """

    def __init__(
        self,
        documents: IDocumentRepository,
        vector_store: IVectorStoreProvider,
        storage: IContentStorage,
        pipeline: IngestionPipeline,
        queue: IJobQueue | None = None,
        mode: str = "inline",
        inline_timeout: float = 30.0,
        job_timeout: float = 300.0,
        storage_timeout: float = 20.0,
        max_files_per_collection: int = 20,
        job_options: JobOptions | None = None,
    ) -> None:
        if mode not in ("inline", "queue"):
            raise ValueError(f"unknown ingest mode: {mode!r}")
        if mode == "queue" and queue is None:
            raise ValueError("queue mode requires a job queue")
        self._documents = documents
        self._vector_store = vector_store
        self._storage = storage
        self._pipeline = pipeline
        self._queue = queue
        self._mode = mode
        self._inline_timeout = inline_timeout
        self._job_timeout = job_timeout
        self._storage_timeout = storage_timeout
        self._max_files_per_collection = max_files_per_collection
        self._job_options = job_options or JobOptions()

    @property
    def mode(self) -> str:
        return self._mode

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        name: str,
        data: bytes,
        mime_type: str,
        collection_id: int | None,
        org_slug: str,
    ) -> IngestReceipt:
        """Store an upload, create its document record, and ingest it.

        Raises
        ------
        CollectionNotFoundError
            If *collection_id* does not exist for *org_slug*.
        CollectionCapacityError
            If the collection already holds ``max_files_per_collection`` documents.
        StorageUnavailableError
            If the bytes could not be stored.  No record is created.
        """
        if collection_id is not None:
            await self._check_capacity(collection_id, org_slug)

        key = build_storage_key(org_slug, name)
        try:
            content_ref = await asyncio.wait_for(
                self._storage.put(key, data, mime_type), timeout=self._storage_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("storage_put_timeout", key=key, timeout_s=self._storage_timeout)
            raise StorageUnavailableError(
                message=f"Storage did not answer within {self._storage_timeout}s",
                provider_name=self._storage.get_provider_name(),
            ) from exc

        document = await self._documents.create_document(
            name=name,
            mime_type=mime_type,
            content_ref=content_ref,
            org_slug=org_slug,
            collection_id=collection_id,
        )
        log = logger.bind(document_id=document.id, mode=self._mode)

        if self._mode == "queue":
            await self._transition(document.id, DocumentStatus.PENDING, DocumentStatus.QUEUED)
            try:
                job_id = await self._queue.enqueue(  # type: ignore[union-attr]
                    {"document_id": document.id}, self._job_options
                )
            except QueueUnavailableError as exc:
                log.warning("enqueue_failed_inline_fallback", error=str(exc))
                outcome = await self._run_attempt(
                    document.id, DocumentStatus.QUEUED, data, self._inline_timeout
                )
                return IngestReceipt(document_id=document.id, status=outcome.status)

            log.info("ingestion_queued", job_id=job_id)
            return IngestReceipt(document_id=document.id, status=DocumentStatus.QUEUED)

        outcome = await self._run_attempt(
            document.id, DocumentStatus.PENDING, data, self._inline_timeout
        )
        return IngestReceipt(document_id=document.id, status=outcome.status)

    async def process_queued(self, document_id: int, redelivered: bool = False) -> PipelineOutcome | None:
        """Run one queued job attempt for *document_id*.

        Returns ``None`` when there is nothing to do: the document was
        deleted, is already completed, or is being processed by someone else.
        A *redelivered* job takes over a document left in ``processing`` by
        a worker whose reservation stalled.
        """
        document = await self._documents.get_document(document_id)
        log = logger.bind(document_id=document_id)
        if document is None:
            log.info("queued_document_missing")
            return None

        status = document.status
        try:
            if status == DocumentStatus.PROCESSING and redelivered:
                log.warning("stalled_document_taken_over")
                await self._transition(document_id, status, DocumentStatus.QUEUED)
                status = DocumentStatus.QUEUED
            if status in (DocumentStatus.COMPLETED, DocumentStatus.PROCESSING):
                log.info("queued_document_skipped", status=status.value)
                return None
            return await self._run_attempt(document_id, status, None, self._job_timeout)
        except InvalidStatusTransitionError as exc:
            # Lost the compare-and-set to a concurrent retry or delete.
            log.info("queued_document_claimed_elsewhere", error=exc.message)
            return None

    async def retry_document(self, document_id: int) -> IngestReceipt:
        """Re-run ingestion for a ``failed`` or stuck ``queued`` document, inline.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        InvalidStatusTransitionError
            If the document is not in a retryable state.
        """
        document = await self.get_document(document_id)
        if document.status not in state_machine.RETRYABLE_STATES:
            raise InvalidStatusTransitionError(
                message=f"Document {document_id} is {document.status.value}; only failed or queued documents can be retried",
            )
        logger.info("ingestion_retry", document_id=document_id, previous_status=document.status.value)
        outcome = await self._run_attempt(document_id, document.status, None, self._inline_timeout)
        return IngestReceipt(document_id=document_id, status=outcome.status)

    async def delete_document(self, document_id: int) -> bool:
        """Delete a document's chunks, then its record.  Safe in any status.

        Returns ``False`` if the document did not exist.
        """
        for attempt in (1, 2):
            removed = await self._vector_store.delete_chunks_for_document(document_id)
            try:
                deleted = await self._documents.delete_document(document_id)
            except VectorStoreError:
                # A worker committed chunks between the two deletes.
                if attempt == 2:
                    raise
                continue
            logger.info("document_removed", document_id=document_id, chunks=removed, existed=deleted)
            return deleted
        return False

    async def get_document(self, document_id: int) -> Document:
        document = await self._documents.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return document

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _check_capacity(self, collection_id: int, org_slug: str) -> None:
        collection = await self._documents.get_collection(collection_id)
        if collection is None or collection.org_slug != org_slug:
            raise CollectionNotFoundError(
                message=f"Collection {collection_id} not found for organization {org_slug}",
            )
        count = await self._documents.count_documents(collection_id)
        if count >= self._max_files_per_collection:
            logger.warning(
                "collection_capacity_reached",
                collection_id=collection_id,
                documents=count,
                limit=self._max_files_per_collection,
            )
            raise CollectionCapacityError(
                message=(
                    f"Collection {collection.name!r} already holds {count} documents "
                    f"(limit {self._max_files_per_collection})"
                ),
            )

    async def _transition(
        self,
        document_id: int,
        current: DocumentStatus,
        target: DocumentStatus,
        failure_reason: str | None = None,
    ) -> Document:
        state_machine.ensure_transition(current, target)
        document = await self._documents.update_status(
            document_id, target, expected=current, failure_reason=failure_reason
        )
        logger.info(
            "document_status_changed",
            document_id=document_id,
            from_status=current.value,
            to_status=target.value,
            reason=failure_reason,
        )
        return document

    async def _run_attempt(
        self,
        document_id: int,
        current: DocumentStatus,
        content: bytes | None,
        timeout: float,
    ) -> PipelineOutcome:
        """Move to ``processing``, run the pipeline under *timeout*, record the outcome."""
        await self._transition(document_id, current, DocumentStatus.PROCESSING)

        try:
            outcome = await asyncio.wait_for(self._pipeline.run(document_id, content), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("ingestion_timeout", document_id=document_id, timeout_s=timeout)
            outcome = PipelineOutcome(
                status=DocumentStatus.FAILED,
                failure_reason=f"timeout: exceeded {timeout}s",
                retryable=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("ingestion_crashed", document_id=document_id)
            outcome = PipelineOutcome(
                status=DocumentStatus.FAILED,
                failure_reason=f"internal_error: {type(exc).__name__}: {exc}",
            )

        await self._record_outcome(document_id, outcome)
        return outcome

    async def _record_outcome(self, document_id: int, outcome: PipelineOutcome) -> None:
        if not outcome.succeeded:
            # A timeout can land after the chunk transaction committed.
            try:
                await self._vector_store.delete_chunks_for_document(document_id)
            except VectorStoreError as exc:
                logger.error("failed_document_cleanup_error", document_id=document_id, error=exc.message)

        try:
            await self._transition(
                document_id,
                DocumentStatus.PROCESSING,
                outcome.status,
                failure_reason=outcome.failure_reason,
            )
        except DocumentNotFoundError:
            logger.info("document_deleted_during_ingestion", document_id=document_id)
            return
        except InvalidStatusTransitionError as exc:
            logger.warning("document_status_conflict", document_id=document_id, error=exc.message)
            return

        if outcome.succeeded:
            logger.info("ingestion_completed", document_id=document_id, chunks=outcome.chunk_count)
        else:
            logger.warning(
                "ingestion_failed",
                document_id=document_id,
                reason=outcome.failure_reason,
                retryable=outcome.retryable,
            )
