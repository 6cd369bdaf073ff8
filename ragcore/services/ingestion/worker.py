"""Queue worker pool for queued ingestion.

Reserves jobs from an :class:`~ragcore.interfaces.job_queue.IJobQueue` and
hands each to :meth:`IngestionOrchestrator.process_queued`.  At most
``concurrency`` documents are processed at once so the embedding provider's
rate limits hold no matter how deep the queue gets.

Job-level retry policy, applied on top of the embedding client's per-call
retry:

    completed                              -> ack
    nothing to do (deleted / done / busy)  -> ack
    failed, retryable, attempts remaining  -> retry after backoff_ms * 2**(attempt-1)
    failed otherwise                       -> fail (dead-lettered)

A job redelivered after its reservation stalled may take over a document
left in ``processing`` by the crashed worker.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable

import structlog

from ragcore.models.job import IngestJob
from ragcore.utils.errors import QueueUnavailableError
from ragcore.utils.logging import log_context

if TYPE_CHECKING:
    from ragcore.interfaces.job_queue import IJobQueue
    from ragcore.services.ingestion.orchestrator import IngestionOrchestrator

logger = structlog.get_logger(logger_name=__name__)

_QUEUE_ERROR_BACKOFF_S = 2.0


class IngestionWorker:
    """A fixed-size pool of concurrent job handlers in one process.

    Parameters
    ----------
    queue:
        Opened job queue.
    orchestrator:
        Orchestrator whose :meth:`process_queued` runs each job.
    concurrency:
        Maximum jobs in flight (default 5).
    poll_timeout:
        Seconds a single reserve call blocks waiting for work.
    """

    def __init__(
        self,
        queue: IJobQueue,
        orchestrator: IngestionOrchestrator,
        concurrency: int = 5,
        poll_timeout: float = 1.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._orchestrator = orchestrator
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._slots = asyncio.Semaphore(concurrency)
        self._stopping = asyncio.Event()
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self) -> None:
        """Pull and process jobs until :meth:`stop` is called, then drain."""
        logger.info(
            "worker_started",
            queue=self._queue.get_provider_name(),
            concurrency=self._concurrency,
        )
        while not self._stopping.is_set():
            await self._slots.acquire()
            if self._stopping.is_set():
                self._slots.release()
                break

            try:
                job = await self._queue.reserve(timeout=self._poll_timeout)
            except QueueUnavailableError as exc:
                self._slots.release()
                logger.error("worker_reserve_failed", error=str(exc))
                await self._sleep_unless_stopping(_QUEUE_ERROR_BACKOFF_S)
                continue

            if job is None:
                self._slots.release()
                continue

            task = asyncio.create_task(self._run_job(job), name=f"ingest-job-{job.job_id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

        if self._in_flight:
            logger.info("worker_draining", in_flight=len(self._in_flight))
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("worker_stopped")

    def stop(self) -> None:
        """Ask :meth:`run` to stop reserving jobs; in-flight jobs finish."""
        self._stopping.set()

    async def _run_job(self, job: IngestJob) -> None:
        try:
            with log_context(job_id=job.job_id, queue=self._queue.get_provider_name()):
                await self.handle(job)
        except Exception as exc:  # noqa: BLE001
            log = logger.bind(job_id=job.job_id, attempt=job.attempts_made)
            log.exception("job_crashed")
            if job.attempts_remaining > 0:
                await self._settle(self._queue.retry(job, job.options.delay_seconds(job.attempts_made)), log)
            else:
                await self._settle(self._queue.fail(job, f"worker error: {exc}"), log)
        finally:
            self._slots.release()

    async def handle(self, job: IngestJob) -> None:
        """Process one reserved job and settle it with the queue."""
        log = logger.bind(job_id=job.job_id, attempt=job.attempts_made, max_attempts=job.options.attempts)
        try:
            document_id = job.document_id
        except (KeyError, TypeError, ValueError):
            log.error("job_payload_invalid", payload=job.payload)
            await self._settle(self._queue.fail(job, "invalid payload"), log)
            return

        log = log.bind(document_id=document_id)
        log.info("job_started", redelivered=job.redelivered)
        outcome = await self._orchestrator.process_queued(document_id, redelivered=job.redelivered)

        if outcome is None or outcome.succeeded:
            await self._settle(self._queue.ack(job), log)
            log.info("job_completed", skipped=outcome is None)
            return

        if outcome.retryable and job.attempts_remaining > 0:
            delay = job.options.delay_seconds(job.attempts_made)
            log.warning("job_attempt_failed", reason=outcome.failure_reason, retry_in_s=delay)
            await self._settle(self._queue.retry(job, delay), log)
            return

        log.error("job_exhausted", reason=outcome.failure_reason, retryable=outcome.retryable)
        await self._settle(self._queue.fail(job, outcome.failure_reason or "failed"), log)

    @staticmethod
    async def _settle(operation: Awaitable[None], log: structlog.BoundLogger) -> None:
        try:
            await operation
        except QueueUnavailableError as exc:
            # The job stays active until its lease runs out; the document status is already recorded.
            log.error("job_settle_failed", error=str(exc))

    async def _sleep_unless_stopping(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
