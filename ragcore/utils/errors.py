"""Custom exception hierarchy for ragcore.

All application exceptions inherit from :class:`RagCoreError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "forge", "redis") caused the failure.

The hierarchy is organized by ingestion and retrieval concern:

    RagCoreError  (base -- catch-all for any ragcore error)
    +-- ExtractionError              (corrupt or undecodable content)
    |   +-- UnsupportedFormatError   (no extractor for the MIME type)
    |   +-- EmptyContentError        (extraction or chunking produced nothing)
    +-- EmbeddingProviderError       (embedding retries exhausted / bad response)
    +-- ProviderUnavailableError     (transient transport or non-2xx failure)
    +-- RateLimitError               (provider rate-limit exceeded)
    +-- StorageUnavailableError      (content storage unreachable)
    +-- QueueUnavailableError        (durable job queue unreachable)
    +-- VectorStoreError             (chunk persistence failure)
    +-- DocumentNotFoundError
    +-- CollectionNotFoundError
    +-- CollectionCapacityError      (per-collection document limit reached)
    +-- InvalidStatusTransitionError (document state machine violation)
    +-- ConfigurationError           (startup / missing config)

Input errors are terminal, transient provider errors are retried by the
embedding client, and infrastructure errors decide between aborting an
upload and falling back to inline ingestion.
"""


class RagCoreError(Exception):
    """Base exception for all ragcore errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Input errors (terminal, never retried)
# ---------------------------------------------------------------------------

class ExtractionError(RagCoreError):
    """Raised when document bytes cannot be turned into text."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFormatError(ExtractionError):
    """Raised when no extractor handles the document's MIME type."""

    def __init__(
        self,
        message: str = "Unsupported document format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyContentError(ExtractionError):
    """Raised when extraction or chunking yields no usable text."""

    def __init__(
        self,
        message: str = "Document produced no text",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding provider errors
# ---------------------------------------------------------------------------

class EmbeddingProviderError(RagCoreError):
    """Raised when embedding generation fails terminally.

    Surfaced by :class:`~ragcore.services.ingestion.embedding_client.EmbeddingClient`
    once its retry budget is spent, or immediately for malformed responses.
    """

    def __init__(
        self,
        message: str = "Embedding provider failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(RagCoreError):
    """Raised when an external provider is unreachable or answers non-2xx.

    The embedding client treats this as transient and retries with backoff.
    """

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(RagCoreError):
    """Raised when an API rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------

class StorageUnavailableError(RagCoreError):
    """Raised when the content storage backend cannot store or return bytes."""

    def __init__(
        self,
        message: str = "Content storage is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class QueueUnavailableError(RagCoreError):
    """Raised when the durable job queue cannot be reached."""

    def __init__(
        self,
        message: str = "Job queue is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreError(RagCoreError):
    """Raised when chunk records cannot be written or read."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Lookup / precondition errors
# ---------------------------------------------------------------------------

class DocumentNotFoundError(RagCoreError):
    """Raised when a document id does not resolve to a record."""

    def __init__(
        self,
        message: str = "Document not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class CollectionNotFoundError(RagCoreError):
    """Raised when a collection id does not resolve to a record."""

    def __init__(
        self,
        message: str = "Collection not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class CollectionCapacityError(RagCoreError):
    """Raised when a collection already holds the maximum number of documents."""

    def __init__(
        self,
        message: str = "Collection is full",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class InvalidStatusTransitionError(RagCoreError):
    """Raised when a document status change violates the state machine."""

    def __init__(
        self,
        message: str = "Invalid document status transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(RagCoreError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
