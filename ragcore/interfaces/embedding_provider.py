"""Abstract base class for text-embedding service providers.

Defines the raw, single-attempt contract for turning text into vectors.
Retry, timeouts and response validation live one layer up in
:class:`~ragcore.services.ingestion.embedding_client.EmbeddingClient`, so
providers stay thin adapters over a vendor API.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider: openai SDK (api.openai.com or a compatible base_url)
#   ForgeEmbeddingProvider: OpenAI-compatible /embeddings endpoint over httpx
# Located in: ragcore/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and retrieval."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts in one request.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  The caller keeps each batch
            within the provider's per-request limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.

        Raises
        ------
        ragcore.utils.errors.ProviderUnavailableError
            On transport failures and non-2xx responses.
        ragcore.utils.errors.RateLimitError
            When the provider rejects the request for rate limiting.
        ragcore.utils.errors.EmbeddingProviderError
            When the response cannot be interpreted.
        """

    @abstractmethod
    def get_dimension(self) -> int | None:
        """Return the expected vector dimensionality, or ``None`` if unknown.

        The value must stay constant for the lifetime of a vector store.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has the credentials it needs."""

    async def close(self) -> None:
        """Release network resources.  No-op by default."""
