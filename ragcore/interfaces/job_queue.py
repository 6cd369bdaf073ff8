"""Abstract base class for the durable ingestion job queue.

One job carries one document id.  The queue owns persistence, delayed
redelivery and dead-lettering; the retry *policy* (whether an attempt
should be retried, and after how long) belongs to the worker.

Queue clients have an explicit lifecycle: callers ``open`` them once at
startup and ``close`` them on shutdown.  Nothing connects lazily.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ragcore.models.job import IngestJob, JobOptions


# Concrete implementations:
#   RedisJobQueue: redis.asyncio lists + sorted sets
# Located in: ragcore/providers/queue/
class IJobQueue(ABC):
    """Contract for enqueueing, reserving and settling ingestion jobs."""

    @abstractmethod
    async def open(self) -> None:
        """Connect to the backend.

        Raises
        ------
        ragcore.utils.errors.QueueUnavailableError
            If the backend cannot be reached.
        """

    @abstractmethod
    async def close(self) -> None:
        """Disconnect from the backend.  Safe to call more than once."""

    @abstractmethod
    async def enqueue(self, payload: dict[str, Any], options: JobOptions) -> str:
        """Submit a job and return its id.

        Raises
        ------
        ragcore.utils.errors.QueueUnavailableError
            If the job could not be persisted.
        """

    @abstractmethod
    async def reserve(self, timeout: float) -> IngestJob | None:
        """Take the next ready job, waiting up to *timeout* seconds.

        The returned job's ``attempts_made`` already counts this attempt.
        Returns ``None`` when no job became ready in time.
        """

    @abstractmethod
    async def ack(self, job: IngestJob) -> None:
        """Mark a reserved job as done."""

    @abstractmethod
    async def retry(self, job: IngestJob, delay_seconds: float) -> None:
        """Put a reserved job back, ready again after *delay_seconds*."""

    @abstractmethod
    async def fail(self, job: IngestJob, reason: str) -> None:
        """Move a reserved job to the failed set; it is not delivered again."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return ``True`` if the backend answers."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this queue."""
