"""Forge embedding provider -- OpenAI-compatible ``/embeddings`` over httpx.

Posts ``{"input": [...], "model": ...}`` to ``{forge_api_url}/embeddings``
with a bearer key and reads ``data[*].embedding`` back, ordered by each
item's ``index``.  Any non-2xx status is a provider failure; 429 is
reported separately as a rate limit.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from ragcore.config.settings import Settings
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.utils.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "forge_embedding"


class ForgeEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider for the Forge API (or any OpenAI-compatible HTTP endpoint)."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        base_url = (settings.embedding_base_url or settings.forge_api_url).rstrip("/")
        if not base_url or not settings.forge_api_key:
            raise ConfigurationError(
                message="FORGE_API_URL (or EMBEDDING_BASE_URL) and FORGE_API_KEY are required",
                provider_name=_PROVIDER_NAME,
            )
        self._url = f"{base_url}/embeddings"
        self._api_key = settings.forge_api_key
        self._model = settings.embedding_model
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.embedding_call_timeout)

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        logger.debug("forge_embedding_request", url=self._url, model=self._model, text_count=len(texts))
        try:
            response = await self._http.post(
                self._url,
                json={"input": texts, "model": self._model},
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                message=f"Forge embeddings request failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        if response.status_code == 429:
            raise RateLimitError(
                message="Forge embeddings API rate limited",
                provider_name=_PROVIDER_NAME,
            )
        if not response.is_success:
            logger.error(
                "forge_embedding_failed",
                status=response.status_code,
                error=response.text[:500],
                url=self._url,
            )
            raise ProviderUnavailableError(
                message=f"Forge embeddings API error: {response.status_code} {response.reason_phrase}",
                provider_name=_PROVIDER_NAME,
            )

        vectors = self._parse(response)
        logger.info(
            "forge_embedding_batch",
            model=self._model,
            batch_size=len(texts),
            embedding_count=len(vectors),
        )
        return vectors

    @staticmethod
    def _parse(response: httpx.Response) -> list[list[float]]:
        try:
            body: dict[str, Any] = response.json()
            items = sorted(body["data"], key=lambda item: item.get("index", 0))
            return [[float(x) for x in item["embedding"]] for item in items]
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingProviderError(
                message=f"Malformed Forge embeddings response: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

    def get_dimension(self) -> int | None:
        return None

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()
