"""Durable ingestion job queue on Redis (redis-py ``redis.asyncio``).

Key layout for a queue named ``rag-ingest``::

    ragcore:rag-ingest:id         counter for job ids
    ragcore:rag-ingest:jobs       hash   job_id -> JSON job record
    ragcore:rag-ingest:waiting    list   ready job ids (LPUSH in, pop from the right)
    ragcore:rag-ingest:active     list   ids reserved by a worker
    ragcore:rag-ingest:leases     zset   active job_id scored by the epoch second its lease ends
    ragcore:rag-ingest:delayed    zset   job_id scored by the epoch second it becomes ready
    ragcore:rag-ingest:completed  list   most recent completed ids, capped
    ragcore:rag-ingest:failed     zset   job_id scored by failure time, pruned by age

Every :meth:`RedisJobQueue.reserve` first hands stalled jobs (active, lease
expired) back to ``waiting`` flagged as redelivered, then promotes due
delayed jobs.  ``ZREM`` decides which of several competing workers
performs a hand-back or a promotion.  An active id seen without a lease
(its worker died between ``BLMOVE`` and the lease write) is given one.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, TypeVar

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from ragcore.interfaces.job_queue import IJobQueue
from ragcore.models.job import IngestJob, JobOptions
from ragcore.utils.errors import QueueUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_KEY_PREFIX = "ragcore"
_PROMOTE_BATCH = 100

_T = TypeVar("_T")


class RedisJobQueue(IJobQueue):
    """Redis implementation of :class:`IJobQueue`.

    Parameters
    ----------
    redis_url:
        Connection URL, e.g. ``redis://localhost:6379/0``.
    queue_name:
        Logical queue name; all keys are namespaced under it.
    completed_retention:
        How many completed job ids to keep for inspection.
    failed_retention_seconds:
        How long failed jobs stay in the failed set before being pruned.
    lease_seconds:
        How long a reserved job may stay unsettled before another worker
        gets it.  Must exceed the worker's per-job timeout.
    connect_timeout:
        Socket connect timeout for a client built from *redis_url*.
    operation_timeout:
        Upper bound on every call except the blocking wait in ``reserve``,
        which gets its own timeout on top of this.
    client:
        Pre-built client, used by tests.  When given, :meth:`open` only pings.
    """

    def __init__(
        self,
        redis_url: str,
        queue_name: str = "rag-ingest",
        completed_retention: int = 1000,
        failed_retention_seconds: int = 86400,
        lease_seconds: float = 600.0,
        connect_timeout: float = 5.0,
        operation_timeout: float = 5.0,
        client: redis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._queue_name = queue_name
        self._completed_retention = completed_retention
        self._failed_retention_seconds = failed_retention_seconds
        self._lease_seconds = lease_seconds
        self._connect_timeout = connect_timeout
        self._operation_timeout = operation_timeout
        self._client = client

        base = f"{_KEY_PREFIX}:{queue_name}"
        self._id_key = f"{base}:id"
        self._jobs_key = f"{base}:jobs"
        self._waiting_key = f"{base}:waiting"
        self._active_key = f"{base}:active"
        self._leases_key = f"{base}:leases"
        self._delayed_key = f"{base}:delayed"
        self._completed_key = f"{base}:completed"
        self._failed_key = f"{base}:failed"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=self._connect_timeout,
            )
        try:
            await self._bounded(self._client.ping(), self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise QueueUnavailableError(
                message=f"Cannot reach Redis at {self._redis_url}: {str(exc) or 'timed out'}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("job_queue_opened", queue=self._queue_name)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("job_queue_closed", queue=self._queue_name)

    @property
    def _redis(self) -> redis.Redis:
        if self._client is None:
            raise QueueUnavailableError(
                message="Job queue is not open",
                provider_name=self.get_provider_name(),
            )
        return self._client

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, payload: dict[str, Any], options: JobOptions) -> str:
        try:
            job_id = await self._bounded(self._enqueue(payload, options), self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise QueueUnavailableError(
                message=f"Failed to enqueue job: {str(exc) or 'timed out'}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("job_enqueued", queue=self._queue_name, job_id=job_id, payload=payload)
        return job_id

    async def _enqueue(self, payload: dict[str, Any], options: JobOptions) -> str:
        job_id = str(await self._redis.incr(self._id_key))
        record = {
            "payload": payload,
            "attempts": options.attempts,
            "backoff_ms": options.backoff_ms,
            "attempts_made": 0,
            "enqueued_at": time.time(),
        }
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._jobs_key, job_id, json.dumps(record))
            pipe.lpush(self._waiting_key, job_id)
            await pipe.execute()
        return job_id

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def reserve(self, timeout: float) -> IngestJob | None:
        try:
            return await self._bounded(self._reserve(timeout), timeout + self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise QueueUnavailableError(
                message=f"Failed to reserve job: {str(exc) or 'timed out'}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def _reserve(self, timeout: float) -> IngestJob | None:
        await self._requeue_stalled()
        await self._promote_due()
        job_id = await self._redis.blmove(self._waiting_key, self._active_key, timeout, "RIGHT", "LEFT")
        if job_id is None:
            return None

        raw = await self._redis.hget(self._jobs_key, job_id)
        if raw is None:
            # Record pruned while the id was still queued.
            await self._redis.lrem(self._active_key, 1, job_id)
            logger.warning("job_record_missing", queue=self._queue_name, job_id=job_id)
            return None

        record = json.loads(raw)
        record["attempts_made"] = int(record.get("attempts_made", 0)) + 1
        redelivered = bool(record.pop("redelivered", False))
        await self._redis.hset(self._jobs_key, job_id, json.dumps(record))
        await self._redis.zadd(self._leases_key, {job_id: time.time() + self._lease_seconds})

        return IngestJob(
            job_id=str(job_id),
            payload=record["payload"],
            options=JobOptions(attempts=record["attempts"], backoff_ms=record["backoff_ms"]),
            attempts_made=record["attempts_made"],
            redelivered=redelivered,
        )

    async def ack(self, job: IngestJob) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self._active_key, 1, job.job_id)
                pipe.zrem(self._leases_key, job.job_id)
                pipe.hdel(self._jobs_key, job.job_id)
                pipe.lpush(self._completed_key, job.job_id)
                pipe.ltrim(self._completed_key, 0, self._completed_retention - 1)
                await self._bounded(pipe.execute(), self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise QueueUnavailableError(
                message=f"Failed to ack job {job.job_id}: {str(exc) or 'timed out'}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("job_acked", queue=self._queue_name, job_id=job.job_id)

    async def retry(self, job: IngestJob, delay_seconds: float) -> None:
        ready_at = time.time() + max(delay_seconds, 0.0)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self._active_key, 1, job.job_id)
                pipe.zrem(self._leases_key, job.job_id)
                pipe.zadd(self._delayed_key, {job.job_id: ready_at})
                await self._bounded(pipe.execute(), self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise QueueUnavailableError(
                message=f"Failed to reschedule job {job.job_id}: {str(exc) or 'timed out'}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info(
            "job_rescheduled",
            queue=self._queue_name,
            job_id=job.job_id,
            delay_s=round(delay_seconds, 3),
            attempts_made=job.attempts_made,
        )

    async def fail(self, job: IngestJob, reason: str) -> None:
        now = time.time()
        record = {
            "payload": job.payload,
            "attempts": job.options.attempts,
            "backoff_ms": job.options.backoff_ms,
            "attempts_made": job.attempts_made,
            "failed_reason": reason,
            "failed_at": now,
        }
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self._active_key, 1, job.job_id)
                pipe.zrem(self._leases_key, job.job_id)
                pipe.hset(self._jobs_key, job.job_id, json.dumps(record))
                pipe.zadd(self._failed_key, {job.job_id: now})
                await self._bounded(pipe.execute(), self._operation_timeout)
            await self._bounded(self._prune_failed(now), self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            raise QueueUnavailableError(
                message=f"Failed to mark job {job.job_id} failed: {str(exc) or 'timed out'}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.warning("job_failed", queue=self._queue_name, job_id=job.job_id, reason=reason)

    async def ping(self) -> bool:
        try:
            return bool(await self._bounded(self._redis.ping(), self._operation_timeout))
        except (RedisError, OSError, QueueUnavailableError, asyncio.TimeoutError):
            return False

    def get_provider_name(self) -> str:
        return "redis_queue"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _bounded(operation: Awaitable[_T], timeout: float) -> _T:
        return await asyncio.wait_for(operation, timeout=timeout)

    async def _requeue_stalled(self) -> None:
        now = time.time()
        active = await self._redis.lrange(self._active_key, 0, -1)
        if active:
            await self._redis.zadd(
                self._leases_key, {job_id: now + self._lease_seconds for job_id in active}, nx=True
            )

        expired = await self._redis.zrangebyscore(
            self._leases_key, "-inf", now, start=0, num=_PROMOTE_BATCH
        )
        for job_id in expired:
            if not await self._redis.zrem(self._leases_key, job_id):
                continue
            raw = await self._redis.hget(self._jobs_key, job_id)
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self._active_key, 1, job_id)
                if raw is not None:
                    record = json.loads(raw)
                    record["redelivered"] = True
                    pipe.hset(self._jobs_key, job_id, json.dumps(record))
                    pipe.lpush(self._waiting_key, job_id)
                await pipe.execute()
            logger.warning("job_stalled_requeued", queue=self._queue_name, job_id=job_id)

    async def _promote_due(self) -> None:
        due = await self._redis.zrangebyscore(
            self._delayed_key, "-inf", time.time(), start=0, num=_PROMOTE_BATCH
        )
        for job_id in due:
            if await self._redis.zrem(self._delayed_key, job_id):
                await self._redis.lpush(self._waiting_key, job_id)

    async def _prune_failed(self, now: float) -> None:
        cutoff = now - self._failed_retention_seconds
        expired = await self._redis.zrangebyscore(self._failed_key, "-inf", cutoff)
        if not expired:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hdel(self._jobs_key, *expired)
            pipe.zremrangebyscore(self._failed_key, "-inf", cutoff)
            await pipe.execute()
