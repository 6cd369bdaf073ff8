"""Unit tests for RedisJobQueue against a mocked redis.asyncio client."""

from __future__ import annotations

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ragcore.models.job import IngestJob, JobOptions
from ragcore.providers.queue import redis_job_queue
from ragcore.providers.queue.redis_job_queue import RedisJobQueue
from ragcore.utils.errors import QueueUnavailableError

_PREFIX = "ragcore:rag-ingest"


async def _hang(*args, **kwargs) -> None:
    await asyncio.sleep(10)


def _mock_client() -> tuple[MagicMock, MagicMock]:
    client = MagicMock()
    commands = (
        "ping", "incr", "hget", "hset", "blmove", "lrem", "lpush",
        "lrange", "zadd", "zrangebyscore", "zrem", "aclose",
    )
    for name in commands:
        setattr(client, name, AsyncMock())
    client.zrangebyscore.return_value = []
    client.lrange.return_value = []

    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    pipe.execute = AsyncMock(return_value=[])
    client.pipeline.return_value = pipe
    return client, pipe


@pytest.fixture
def client_and_pipe() -> tuple[MagicMock, MagicMock]:
    return _mock_client()


@pytest.fixture
def queue(client_and_pipe: tuple[MagicMock, MagicMock]) -> RedisJobQueue:
    client, _ = client_and_pipe
    return RedisJobQueue("redis://localhost:6379", client=client)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_open_pings(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        await queue.open()
        client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_open_unreachable(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.ping.side_effect = RedisConnectionError("refused")
        with pytest.raises(QueueUnavailableError, match="Cannot reach Redis"):
            await queue.open()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        await queue.close()
        await queue.close()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_operations_after_close(self, queue: RedisJobQueue) -> None:
        await queue.close()
        with pytest.raises(QueueUnavailableError, match="not open"):
            await queue.enqueue({"document_id": 1}, JobOptions())
        assert await queue.ping() is False


    @pytest.mark.asyncio
    async def test_open_sets_connect_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        client, _ = _mock_client()
        from_url = MagicMock(return_value=client)
        monkeypatch.setattr(redis_job_queue.redis, "from_url", from_url)

        await RedisJobQueue("redis://cache:6379", connect_timeout=2.0).open()

        assert from_url.call_args.kwargs["socket_connect_timeout"] == 2.0

    @pytest.mark.asyncio
    async def test_open_hanging_server(self) -> None:
        client, _ = _mock_client()
        client.ping.side_effect = _hang
        queue = RedisJobQueue("redis://cache:6379", operation_timeout=0.05, client=client)
        with pytest.raises(QueueUnavailableError, match="timed out"):
            await queue.open()


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_stores_record_and_pushes(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, pipe = client_and_pipe
        client.incr.return_value = 7

        job_id = await queue.enqueue({"document_id": 42}, JobOptions(attempts=5, backoff_ms=2000))

        assert job_id == "7"
        client.incr.assert_awaited_once_with(f"{_PREFIX}:id")
        key, field, raw = pipe.hset.call_args.args
        assert (key, field) == (f"{_PREFIX}:jobs", "7")
        record = json.loads(raw)
        assert record["payload"] == {"document_id": 42}
        assert record["attempts"] == 5
        assert record["backoff_ms"] == 2000
        assert record["attempts_made"] == 0
        pipe.lpush.assert_called_once_with(f"{_PREFIX}:waiting", "7")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enqueue_failure(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.incr.side_effect = RedisConnectionError("down")
        with pytest.raises(QueueUnavailableError, match="Failed to enqueue"):
            await queue.enqueue({"document_id": 1}, JobOptions())


    @pytest.mark.asyncio
    async def test_enqueue_that_hangs_times_out(self, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.incr.side_effect = _hang
        queue = RedisJobQueue("redis://localhost:6379", operation_timeout=0.05, client=client)

        with pytest.raises(QueueUnavailableError, match="Failed to enqueue job: timed out"):
            await asyncio.wait_for(queue.enqueue({"document_id": 1}, JobOptions()), timeout=2.0)


class TestReserve:
    @pytest.mark.asyncio
    async def test_reserve_counts_attempt(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.blmove.return_value = "3"
        client.hget.return_value = json.dumps(
            {"payload": {"document_id": 8}, "attempts": 5, "backoff_ms": 2000, "attempts_made": 1}
        )

        job = await queue.reserve(timeout=1.0)

        assert job == IngestJob(
            job_id="3",
            payload={"document_id": 8},
            options=JobOptions(attempts=5, backoff_ms=2000),
            attempts_made=2,
        )
        client.blmove.assert_awaited_once_with(
            f"{_PREFIX}:waiting", f"{_PREFIX}:active", 1.0, "RIGHT", "LEFT"
        )
        saved = json.loads(client.hset.call_args.args[2])
        assert saved["attempts_made"] == 2

    @pytest.mark.asyncio
    async def test_reserve_timeout_returns_none(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.blmove.return_value = None
        assert await queue.reserve(timeout=0.1) is None

    @pytest.mark.asyncio
    async def test_reserve_promotes_due_delayed_jobs(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.zrangebyscore.side_effect = [[], ["5", "6"]]
        client.zrem.side_effect = [1, 0]
        client.blmove.return_value = None

        await queue.reserve(timeout=0.1)

        client.lpush.assert_awaited_once_with(f"{_PREFIX}:waiting", "5")

    @pytest.mark.asyncio
    async def test_reserve_drops_missing_record(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.blmove.return_value = "9"
        client.hget.return_value = None

        assert await queue.reserve(timeout=0.1) is None
        client.lrem.assert_awaited_once_with(f"{_PREFIX}:active", 1, "9")


    @pytest.mark.asyncio
    async def test_reserve_takes_a_lease(self, client_and_pipe) -> None:
        client, _ = client_and_pipe
        queue = RedisJobQueue("redis://localhost:6379", lease_seconds=60.0, client=client)
        client.blmove.return_value = "3"
        client.hget.return_value = json.dumps(
            {"payload": {"document_id": 8}, "attempts": 5, "backoff_ms": 2000, "attempts_made": 0}
        )

        before = time.time()
        job = await queue.reserve(timeout=1.0)

        assert job is not None and job.redelivered is False
        key, mapping = client.zadd.call_args.args
        assert key == f"{_PREFIX}:leases"
        assert before + 60.0 <= mapping["3"] <= time.time() + 60.0

    @pytest.mark.asyncio
    async def test_reserve_hands_back_expired_leases(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, pipe = client_and_pipe
        client.lrange.return_value = ["12"]
        client.zrangebyscore.side_effect = [["12"], []]
        client.zrem.return_value = 1
        client.hget.return_value = json.dumps(
            {"payload": {"document_id": 4}, "attempts": 5, "backoff_ms": 2000, "attempts_made": 1}
        )
        client.blmove.return_value = None

        await queue.reserve(timeout=0.1)

        assert client.zadd.call_args.kwargs == {"nx": True}
        client.zrem.assert_awaited_once_with(f"{_PREFIX}:leases", "12")
        pipe.lrem.assert_called_once_with(f"{_PREFIX}:active", 1, "12")
        pipe.lpush.assert_called_once_with(f"{_PREFIX}:waiting", "12")
        assert json.loads(pipe.hset.call_args.args[2])["redelivered"] is True

    @pytest.mark.asyncio
    async def test_lease_claimed_by_other_worker(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, pipe = client_and_pipe
        client.zrangebyscore.side_effect = [["12"], []]
        client.zrem.return_value = 0
        client.blmove.return_value = None

        await queue.reserve(timeout=0.1)

        pipe.lpush.assert_not_called()

    @pytest.mark.asyncio
    async def test_redelivered_flag_is_reported_once(self, queue: RedisJobQueue, client_and_pipe) -> None:
        client, _ = client_and_pipe
        client.blmove.return_value = "12"
        client.hget.return_value = json.dumps(
            {
                "payload": {"document_id": 4},
                "attempts": 5,
                "backoff_ms": 2000,
                "attempts_made": 1,
                "redelivered": True,
            }
        )

        job = await queue.reserve(timeout=0.1)

        assert job is not None
        assert job.redelivered is True
        assert job.attempts_made == 2
        assert "redelivered" not in json.loads(client.hset.call_args.args[2])


class TestSettle:
    @pytest.fixture
    def job(self) -> IngestJob:
        return IngestJob(job_id="4", payload={"document_id": 2}, options=JobOptions(attempts=3), attempts_made=1)

    @pytest.mark.asyncio
    async def test_ack(self, queue: RedisJobQueue, client_and_pipe, job: IngestJob) -> None:
        _, pipe = client_and_pipe
        await queue.ack(job)
        pipe.lrem.assert_called_once_with(f"{_PREFIX}:active", 1, "4")
        pipe.zrem.assert_called_once_with(f"{_PREFIX}:leases", "4")
        pipe.hdel.assert_called_once_with(f"{_PREFIX}:jobs", "4")
        pipe.ltrim.assert_called_once_with(f"{_PREFIX}:completed", 0, 999)

    @pytest.mark.asyncio
    async def test_retry_schedules_delayed(self, queue: RedisJobQueue, client_and_pipe, job: IngestJob) -> None:
        _, pipe = client_and_pipe
        await queue.retry(job, delay_seconds=2.0)
        key, mapping = pipe.zadd.call_args.args
        assert key == f"{_PREFIX}:delayed"
        assert list(mapping) == ["4"]

    @pytest.mark.asyncio
    async def test_fail_records_reason(self, queue: RedisJobQueue, client_and_pipe, job: IngestJob) -> None:
        _, pipe = client_and_pipe
        await queue.fail(job, "embedding_failed: provider down")
        record = json.loads(pipe.hset.call_args.args[2])
        assert record["failed_reason"] == "embedding_failed: provider down"
        assert pipe.zadd.call_args.args[0] == f"{_PREFIX}:failed"

    @pytest.mark.asyncio
    async def test_settle_failure(self, queue: RedisJobQueue, client_and_pipe, job: IngestJob) -> None:
        _, pipe = client_and_pipe
        pipe.execute.side_effect = RedisConnectionError("gone")
        with pytest.raises(QueueUnavailableError):
            await queue.ack(job)
