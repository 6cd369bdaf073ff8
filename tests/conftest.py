"""Shared pytest fixtures for the ragcore test suite.

Embedding, storage and queue boundaries are replaced by in-memory fakes
that implement the real interfaces; SQLite stores run against a database
file in ``tmp_path``.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from ragcore.config.settings import Settings
from ragcore.interfaces.content_storage import IContentStorage
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.interfaces.job_queue import IJobQueue
from ragcore.models.document import Collection
from ragcore.models.job import IngestJob, JobOptions
from ragcore.providers.document_store.sqlite_document_store import SQLiteDocumentStore
from ragcore.providers.extraction.document_text_extractor import DocumentTextExtractor
from ragcore.providers.vector_store.sqlite_vector_store import SQLiteVectorStore
from ragcore.services.ingestion.chunker import TextChunker
from ragcore.services.ingestion.embedding_client import EmbeddingClient
from ragcore.services.ingestion.orchestrator import IngestionOrchestrator
from ragcore.services.ingestion.pipeline import IngestionPipeline
from ragcore.utils.errors import QueueUnavailableError, StorageUnavailableError

FAKE_DIMENSION = 64
_TOKEN = re.compile(r"\w+")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def bag_of_words_vector(text: str, dimension: int = FAKE_DIMENSION) -> list[float]:
    """Deterministic hashed bag-of-words vector: shared words mean higher cosine."""
    vector = [0.0] * dimension
    for token in _TOKEN.findall(text.lower()):
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    return vector


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Embeds with :func:`bag_of_words_vector`.

    ``failures`` is consumed one exception per call before calls succeed;
    ``fail_always`` makes every call raise it.  ``delay`` slows each call.
    """

    def __init__(self, dimension: int = FAKE_DIMENSION) -> None:
        self.dimension = dimension
        self.failures: list[Exception] = []
        self.fail_always: Exception | None = None
        self.delay = 0.0
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)
        return [bag_of_words_vector(t, self.dimension) for t in texts]

    def get_dimension(self) -> int | None:
        return self.dimension

    def get_provider_name(self) -> str:
        return "fake_embedding"

    def is_available(self) -> bool:
        return True


class InMemoryContentStorage(IContentStorage):
    """Dict-backed content storage; set ``available = False`` to simulate an outage."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.available = True

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        if not self.available:
            raise StorageUnavailableError(message="storage down", provider_name="memory")
        ref = f"mem://{key}"
        self.objects[ref] = data
        return ref

    async def get(self, content_ref: str) -> bytes:
        if not self.available or content_ref not in self.objects:
            raise StorageUnavailableError(message=f"missing {content_ref}", provider_name="memory")
        return self.objects[content_ref]

    async def health_check(self) -> bool:
        return self.available

    def get_provider_name(self) -> str:
        return "memory_storage"


class InMemoryJobQueue(IJobQueue):
    """Single-process job queue that records how each job was settled.

    Retried jobs become ready again immediately; the requested delays are
    kept in ``retry_delays``.  Reserved jobs stay in ``active`` until
    settled; :meth:`expire_leases` hands them back as a crashed worker's
    jobs would be.
    """

    def __init__(self) -> None:
        self.available = True
        self.waiting: list[str] = []
        self.records: dict[str, dict[str, Any]] = {}
        self.acked: list[str] = []
        self.failed: dict[str, str] = {}
        self.retry_delays: list[float] = []
        self.active: list[str] = []
        self._next_id = 0

    def _check(self) -> None:
        if not self.available:
            raise QueueUnavailableError(message="queue down", provider_name="memory_queue")

    async def open(self) -> None:
        self._check()

    async def close(self) -> None:
        return None

    async def enqueue(self, payload: dict[str, Any], options: JobOptions) -> str:
        self._check()
        self._next_id += 1
        job_id = str(self._next_id)
        self.records[job_id] = {"payload": payload, "options": options, "attempts_made": 0}
        self.waiting.append(job_id)
        return job_id

    async def reserve(self, timeout: float) -> IngestJob | None:
        self._check()
        if not self.waiting:
            await asyncio.sleep(min(timeout, 0.01))
            return None
        job_id = self.waiting.pop(0)
        record = self.records[job_id]
        record["attempts_made"] += 1
        self.active.append(job_id)
        return IngestJob(
            job_id=job_id,
            payload=record["payload"],
            options=record["options"],
            attempts_made=record["attempts_made"],
            redelivered=record.pop("redelivered", False),
        )

    def expire_leases(self) -> list[str]:
        expired, self.active = self.active, []
        for job_id in expired:
            self.records[job_id]["redelivered"] = True
            self.waiting.append(job_id)
        return expired

    def _settle(self, job: IngestJob) -> None:
        if job.job_id in self.active:
            self.active.remove(job.job_id)

    async def ack(self, job: IngestJob) -> None:
        self._check()
        self._settle(job)
        self.acked.append(job.job_id)

    async def retry(self, job: IngestJob, delay_seconds: float) -> None:
        self._check()
        self._settle(job)
        self.retry_delays.append(delay_seconds)
        self.waiting.append(job.job_id)

    async def fail(self, job: IngestJob, reason: str) -> None:
        self._check()
        self._settle(job)
        self.failed[job.job_id] = reason

    async def ping(self) -> bool:
        return self.available

    def get_provider_name(self) -> str:
        return "memory_queue"


async def no_sleep(_: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "ragcore-test.db"


@pytest.fixture
def settings(tmp_path: Path, db_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_path=str(db_path),
        upload_dir=str(tmp_path / "uploads"),
        openai_api_key="sk-test",
        embedding_retry_base_delay=0.0,
        chunk_size=200,
        chunk_overlap=40,
    )


@pytest_asyncio.fixture
async def document_store(db_path: Path) -> SQLiteDocumentStore:
    store = SQLiteDocumentStore(db_path=db_path)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def vector_store(db_path: Path, document_store: SQLiteDocumentStore) -> SQLiteVectorStore:
    store = SQLiteVectorStore(db_path=db_path)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def collection(document_store: SQLiteDocumentStore) -> Collection:
    return await document_store.create_collection("handbook", "acme", "Employee handbook")


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_client(fake_provider: FakeEmbeddingProvider) -> EmbeddingClient:
    return EmbeddingClient(fake_provider, base_delay=0.0, sleep=no_sleep)


@pytest.fixture
def content_storage() -> InMemoryContentStorage:
    return InMemoryContentStorage()


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def pipeline(
    document_store: SQLiteDocumentStore,
    vector_store: SQLiteVectorStore,
    content_storage: InMemoryContentStorage,
    embedding_client: EmbeddingClient,
) -> IngestionPipeline:
    return IngestionPipeline(
        documents=document_store,
        vector_store=vector_store,
        storage=content_storage,
        extractor=DocumentTextExtractor(),
        chunker=TextChunker(chunk_size=200, overlap=40),
        embedding_client=embedding_client,
    )


@pytest.fixture
def make_orchestrator(
    document_store: SQLiteDocumentStore,
    vector_store: SQLiteVectorStore,
    content_storage: InMemoryContentStorage,
    pipeline: IngestionPipeline,
    job_queue: InMemoryJobQueue,
):
    """Factory: ``make_orchestrator(mode="queue", inline_timeout=0.1, ...)``."""

    def _make(mode: str = "inline", **overrides: Any) -> IngestionOrchestrator:
        kwargs: dict[str, Any] = {
            "documents": document_store,
            "vector_store": vector_store,
            "storage": content_storage,
            "pipeline": pipeline,
            "queue": job_queue if mode == "queue" else None,
            "mode": mode,
            "job_options": JobOptions(attempts=3, backoff_ms=2000),
        }
        kwargs.update(overrides)
        return IngestionOrchestrator(**kwargs)

    return _make


@pytest.fixture
def handbook_text() -> str:
    paragraphs = [
        "Parental leave is sixteen weeks at full pay for every new parent, "
        "including adoptive and foster parents.",
        "Expense reports must be filed within thirty days of travel and need "
        "receipts for anything above twenty five euros.",
        "The office is closed on public holidays; on call engineers receive a "
        "compensating day off for each holiday worked.",
        "Security incidents are reported to the security channel immediately and "
        "a written summary follows within one business day.",
    ]
    return "\n\n".join(paragraphs)
