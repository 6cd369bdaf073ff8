"""Unit tests for EmbeddingClient retry, backoff and validation."""

from __future__ import annotations

import asyncio

import pytest

from ragcore.services.ingestion.embedding_client import EmbeddingClient
from ragcore.utils.errors import (
    EmbeddingProviderError,
    ProviderUnavailableError,
    RateLimitError,
)
from tests.conftest import FakeEmbeddingProvider


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _client(provider: FakeEmbeddingProvider, **kwargs) -> tuple[EmbeddingClient, _SleepRecorder]:
    sleeper = _SleepRecorder()
    return EmbeddingClient(provider, sleep=sleeper, **kwargs), sleeper


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_two_transient_failures(self) -> None:
        provider = FakeEmbeddingProvider()
        provider.failures = [
            ProviderUnavailableError(message="502 Bad Gateway"),
            RateLimitError(message="429"),
        ]
        client, sleeper = _client(provider)

        vector = await client.embed("parental leave")

        assert len(vector) == provider.dimension
        assert len(provider.calls) == 3
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_embedding_provider_error(self) -> None:
        provider = FakeEmbeddingProvider()
        provider.fail_always = ProviderUnavailableError(message="503 Service Unavailable")
        client, sleeper = _client(provider)

        with pytest.raises(EmbeddingProviderError, match="after 3 attempts") as exc_info:
            await client.embed("anything")

        assert len(provider.calls) == 3
        assert sleeper.delays == [1.0, 2.0]
        assert isinstance(exc_info.value.__cause__, ProviderUnavailableError)
        assert exc_info.value.provider_name == "fake_embedding"

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self) -> None:
        provider = FakeEmbeddingProvider()
        provider.delay = 0.5
        client, _ = _client(provider, max_attempts=2, call_timeout=0.01, base_delay=0.0)

        with pytest.raises(EmbeddingProviderError):
            await client.embed("slow")
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_non_transient_error_is_not_retried(self) -> None:
        provider = FakeEmbeddingProvider()
        provider.fail_always = EmbeddingProviderError(message="malformed response")
        client, sleeper = _client(provider)

        with pytest.raises(EmbeddingProviderError, match="malformed"):
            await client.embed("x")
        assert len(provider.calls) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_custom_base_delay_doubles(self) -> None:
        provider = FakeEmbeddingProvider()
        provider.fail_always = ProviderUnavailableError()
        client, sleeper = _client(provider, max_attempts=4, base_delay=0.5)

        with pytest.raises(EmbeddingProviderError):
            await client.embed("x")
        assert sleeper.delays == [0.5, 1.0, 2.0]

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ValueError):
            EmbeddingClient(FakeEmbeddingProvider(), max_attempts=0)


class TestBatching:
    @pytest.mark.asyncio
    async def test_batches_preserve_order(self) -> None:
        provider = FakeEmbeddingProvider()
        client, _ = _client(provider, batch_size=2)
        texts = ["alpha", "beta", "gamma", "delta", "epsilon"]

        vectors = await client.embed_batch(texts)

        assert len(vectors) == 5
        assert len(provider.calls) == 3
        single = [(await client.embed(t)) for t in texts]
        assert vectors == single

    @pytest.mark.asyncio
    async def test_empty_batch_skips_provider(self) -> None:
        provider = FakeEmbeddingProvider()
        client, _ = _client(provider)
        assert await client.embed_batch([]) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_wrong_vector_count_rejected(self) -> None:
        class _ShortProvider(FakeEmbeddingProvider):
            async def embed(self, texts: list[str]) -> list[list[float]]:
                return [[1.0, 0.0]]

        client, _ = _client(_ShortProvider())
        with pytest.raises(EmbeddingProviderError, match="returned 1 vectors for 2 texts"):
            await client.embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_inconsistent_dimensions_rejected(self) -> None:
        class _RaggedProvider(FakeEmbeddingProvider):
            async def embed(self, texts: list[str]) -> list[list[float]]:
                return [[1.0] * (i + 1) for i in range(len(texts))]

        client, _ = _client(_RaggedProvider())
        with pytest.raises(EmbeddingProviderError, match="inconsistent vector dimensions"):
            await client.embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_concurrent_batches_are_bounded(self) -> None:
        in_flight = 0
        peak = 0

        class _CountingProvider(FakeEmbeddingProvider):
            async def embed(self, texts: list[str]) -> list[list[float]]:
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return await super().embed(texts)

        client, _ = _client(_CountingProvider(), batch_size=1, max_concurrency=2)
        await client.embed_batch([f"text {i}" for i in range(6)])
        assert peak == 2


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        client, _ = _client(FakeEmbeddingProvider())
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_unhealthy_without_retry(self) -> None:
        provider = FakeEmbeddingProvider()
        provider.fail_always = ProviderUnavailableError()
        client, sleeper = _client(provider)
        assert await client.health_check() is False
        assert len(provider.calls) == 1
        assert sleeper.delays == []
