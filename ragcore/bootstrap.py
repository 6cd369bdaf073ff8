"""Component assembly shared by the API server, the worker and the CLI.

:func:`build_components` constructs every provider and service from one
:class:`Settings` and returns them as a flat dict (the API stores each
entry on ``app.state``).  Nothing touches the network or disk until
:func:`initialize_components` runs.
"""

from __future__ import annotations

from typing import Any

from ragcore.config.settings import Settings
from ragcore.interfaces.content_storage import IContentStorage
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.models.job import JobOptions
from ragcore.providers.document_store.sqlite_document_store import SQLiteDocumentStore
from ragcore.providers.embedding.forge_embedding_provider import ForgeEmbeddingProvider
from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from ragcore.providers.extraction.document_text_extractor import DocumentTextExtractor
from ragcore.providers.queue.redis_job_queue import RedisJobQueue
from ragcore.providers.storage.forge_storage_provider import ForgeContentStorage
from ragcore.providers.storage.local_storage_provider import LocalContentStorage
from ragcore.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from ragcore.services.collection_service import CollectionService
from ragcore.services.health_service import HealthService
from ragcore.services.ingestion.chunker import TextChunker
from ragcore.services.ingestion.embedding_client import EmbeddingClient
from ragcore.services.ingestion.orchestrator import IngestionOrchestrator
from ragcore.services.ingestion.pipeline import IngestionPipeline
from ragcore.services.retrieval.retrieval_service import RetrievalService
from ragcore.utils.errors import QueueUnavailableError
from ragcore.utils.logging import get_logger

logger = get_logger(__name__)


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Return the provider selected by ``EMBEDDING_PROVIDER``.

    Raises ``ConfigurationError`` when the selected provider has no credentials.
    """
    if app_settings.embedding_provider == "forge":
        return ForgeEmbeddingProvider(settings=app_settings)
    return OpenAIEmbeddingProvider(settings=app_settings)


def build_storage(app_settings: Settings) -> IContentStorage:
    if app_settings.storage_mode == "forge":
        return ForgeContentStorage(settings=app_settings)
    return LocalContentStorage(upload_dir=app_settings.upload_dir)


def build_queue(app_settings: Settings) -> RedisJobQueue:
    return RedisJobQueue(
        redis_url=app_settings.redis_url,
        queue_name=app_settings.queue_name,
        completed_retention=app_settings.completed_job_retention,
        failed_retention_seconds=app_settings.failed_job_retention_seconds,
        lease_seconds=app_settings.job_lease_seconds,
        connect_timeout=app_settings.redis_connect_timeout_seconds,
        operation_timeout=app_settings.redis_operation_timeout_seconds,
    )


def build_components(
    app_settings: Settings,
    *,
    embedding_provider: IEmbeddingProvider | None = None,
    storage: IContentStorage | None = None,
    queue: Any | None = None,
) -> dict[str, Any]:
    """Construct every provider and service for one process.

    Parameters
    ----------
    app_settings:
        Loaded settings.
    embedding_provider, storage, queue:
        Optional replacements for the configured providers.  A queue is
        only built in ``queue`` ingest mode.
    """
    provider = embedding_provider or build_embedding_provider(app_settings)
    content_storage = storage or build_storage(app_settings)
    job_queue = queue
    if job_queue is None and app_settings.rag_ingest_mode == "queue":
        job_queue = build_queue(app_settings)

    document_store = SQLiteDocumentStore(db_path=app_settings.database_path)
    vector_store = SQLiteVectorStore(db_path=app_settings.database_path)

    embedding_client = EmbeddingClient(
        provider,
        max_attempts=app_settings.embedding_max_attempts,
        base_delay=app_settings.embedding_retry_base_delay,
        call_timeout=app_settings.embedding_call_timeout,
        batch_size=app_settings.embedding_batch_size,
        max_concurrency=app_settings.embedding_max_concurrency,
    )
    pipeline = IngestionPipeline(
        documents=document_store,
        vector_store=vector_store,
        storage=content_storage,
        extractor=DocumentTextExtractor(),
        chunker=TextChunker(chunk_size=app_settings.chunk_size, overlap=app_settings.chunk_overlap),
        embedding_client=embedding_client,
        storage_timeout=app_settings.storage_timeout_seconds,
    )
    orchestrator = IngestionOrchestrator(
        documents=document_store,
        vector_store=vector_store,
        storage=content_storage,
        pipeline=pipeline,
        queue=job_queue,
        mode=app_settings.rag_ingest_mode,
        inline_timeout=app_settings.inline_timeout_seconds,
        job_timeout=app_settings.job_timeout_seconds,
        storage_timeout=app_settings.storage_timeout_seconds,
        max_files_per_collection=app_settings.max_files_per_collection,
        job_options=JobOptions(attempts=app_settings.job_attempts, backoff_ms=app_settings.job_backoff_ms),
    )

    return {
        "settings": app_settings,
        "embedding_provider": provider,
        "embedding_client": embedding_client,
        "storage": content_storage,
        "queue": job_queue,
        "document_store": document_store,
        "vector_store": vector_store,
        "pipeline": pipeline,
        "orchestrator": orchestrator,
        "retrieval_service": RetrievalService(
            embedding_client, vector_store, default_top_k=app_settings.rag_top_k
        ),
        "collection_service": CollectionService(document_store, auto_agent_kb=app_settings.auto_agent_kb),
        "health_service": HealthService(app_settings, content_storage, embedding_client, queue=job_queue),
    }


async def initialize_components(components: dict[str, Any], *, require_queue: bool = False) -> None:
    """Create the database schema and connect the job queue.

    An unreachable queue is logged and tolerated unless *require_queue* is
    set: uploads then fall back to inline ingestion.
    """
    await components["document_store"].initialize()
    await components["vector_store"].initialize()

    queue = components["queue"]
    if queue is None:
        return
    try:
        await queue.open()
    except QueueUnavailableError as exc:
        if require_queue:
            raise
        logger.warning("queue_unavailable_at_startup", error=exc.message)


async def close_components(components: dict[str, Any]) -> None:
    """Release network clients held by providers."""
    if components["queue"] is not None:
        await components["queue"].close()
    await components["storage"].close()
    await components["embedding_provider"].close()
