"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Points at api.openai.com by default, or at any OpenAI-compatible server
via ``embedding_base_url``.  The SDK's own retries are disabled; retry and
backoff are applied by the embedding client.
"""

from __future__ import annotations

import openai
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

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API."""

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        if not settings.openai_api_key and client is None:
            raise ConfigurationError(
                message="OPENAI_API_KEY is required for the openai embedding provider",
                provider_name="openai_embedding",
            )
        self._api_key = settings.openai_api_key
        self._model = settings.embedding_model
        self._dimension = _MODEL_DIMENSIONS.get(self._model)
        self._provider_label = (
            "openai-compatible_embedding" if settings.embedding_base_url else "openai_embedding"
        )

        if client is None:
            client_kwargs: dict = {
                "api_key": self._api_key,
                "timeout": settings.embedding_call_timeout,
                "max_retries": 0,
            }
            if settings.embedding_base_url:
                client_kwargs["base_url"] = settings.embedding_base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch with a single ``embeddings.create`` call."""
        if not texts:
            return []

        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.RateLimitError as exc:
            raise RateLimitError(
                message=f"{self._provider_label} rate limited: {exc}",
                provider_name=self._provider_label,
            ) from exc
        except (openai.APIConnectionError, openai.APIStatusError) as exc:
            # APITimeoutError is an APIConnectionError.
            raise ProviderUnavailableError(
                message=f"{self._provider_label} request failed: {exc}",
                provider_name=self._provider_label,
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingProviderError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self._provider_label,
            ) from exc

        items = sorted(response.data, key=lambda item: item.index)
        logger.info(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [list(item.embedding) for item in items]

    def get_dimension(self) -> int | None:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    async def close(self) -> None:
        await self._client.close()
