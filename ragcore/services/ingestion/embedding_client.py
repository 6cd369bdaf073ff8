"""Embedding client with bounded retry and exponential backoff.

Sits between the ingestion/retrieval services and an
:class:`~ragcore.interfaces.embedding_provider.IEmbeddingProvider`.  Each
provider call gets its own timeout and is retried on transient failures
(transport errors, non-2xx answers, rate limits, timeouts): three attempts
in total, sleeping 1s then 2s between them by default.  When the budget is
spent the last error is surfaced as :class:`EmbeddingProviderError`.

This is the inner of two retry layers.  In queue mode the worker retries
the whole document on top of it.

The client holds no mutable state after construction and is shared by
every concurrent ingestion job and search request.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.utils.concurrency import gather_bounded
from ragcore.utils.errors import (
    EmbeddingProviderError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)

_TRANSIENT_ERRORS = (ProviderUnavailableError, RateLimitError, asyncio.TimeoutError)

_HEALTH_PROBE = "ping"


class EmbeddingClient:
    """Retrying, validating front for an embedding provider.

    Parameters
    ----------
    provider:
        The provider boundary performing single-attempt calls.
    max_attempts:
        Total attempts per provider call, including the first (default 3).
    base_delay:
        Seconds slept after the first failure; doubles after each further
        failure (default 1.0).
    call_timeout:
        Per-attempt timeout in seconds.
    batch_size:
        Maximum texts per provider call in :meth:`embed_batch`.
    max_concurrency:
        Maximum provider calls in flight for one :meth:`embed_batch`.
    sleep:
        Coroutine used to wait between attempts.  Tests pass a recorder.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        call_timeout: float = 20.0,
        batch_size: int = 64,
        max_concurrency: int = 4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._provider = provider
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._call_timeout = call_timeout
        self._batch_size = batch_size
        self._max_concurrency = max(1, max_concurrency)
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single text (e.g. a search query)."""
        vectors = await self._embed_with_retry([text])
        self._check_dimensions(vectors)
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, preserving order.

        Texts are split into provider-sized batches which run concurrently
        (bounded by ``max_concurrency``), each with its own retry budget.
        All returned vectors share one dimensionality.

        Raises
        ------
        EmbeddingProviderError
            If any batch exhausts its retries or the provider answers with
            the wrong number or shape of vectors.
        """
        if not texts:
            return []

        batches = [texts[i : i + self._batch_size] for i in range(0, len(texts), self._batch_size)]
        results = await gather_bounded(
            (self._embed_with_retry(batch) for batch in batches),
            limit=self._max_concurrency,
        )

        vectors: list[list[float]] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)
        self._check_dimensions(vectors)
        return vectors

    async def health_check(self) -> bool:
        """Embed a probe string once, without retry."""
        try:
            vectors = await asyncio.wait_for(
                self._provider.embed([_HEALTH_PROBE]), timeout=self._call_timeout
            )
        except (*_TRANSIENT_ERRORS, EmbeddingProviderError) as exc:
            logger.warning("embedding_health_check_failed", provider=self.provider_name, error=str(exc))
            return False
        return len(vectors) == 1 and len(vectors[0]) > 0

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def _embed_with_retry(self, texts: list[str]) -> list[list[float]]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._base_delay, exp_base=2),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    vectors = await asyncio.wait_for(
                        self._provider.embed(texts), timeout=self._call_timeout
                    )
        except _TRANSIENT_ERRORS as exc:
            logger.error(
                "embedding_retries_exhausted",
                provider=self.provider_name,
                attempts=self._max_attempts,
                text_count=len(texts),
                error=str(exc) or type(exc).__name__,
            )
            raise EmbeddingProviderError(
                message=f"Embedding failed after {self._max_attempts} attempts: {exc or type(exc).__name__}",
                provider_name=self.provider_name,
            ) from exc

        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                message=f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                provider_name=self.provider_name,
            )
        return vectors

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "embedding_retry",
            provider=self.provider_name,
            attempt=retry_state.attempt_number,
            max_attempts=self._max_attempts,
            wait_s=retry_state.next_action.sleep if retry_state.next_action else None,
            error=(str(exc) or type(exc).__name__) if exc else None,
        )

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        dims = {len(v) for v in vectors}
        if len(dims) != 1 or 0 in dims:
            raise EmbeddingProviderError(
                message=f"Provider returned inconsistent vector dimensions: {sorted(dims)}",
                provider_name=self.provider_name,
            )
        expected = self._provider.get_dimension()
        dim = dims.pop()
        if expected is not None and dim != expected:
            raise EmbeddingProviderError(
                message=f"Provider returned {dim}-dimensional vectors, expected {expected}",
                provider_name=self.provider_name,
            )
