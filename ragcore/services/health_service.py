"""Dependency health probes for the ``/health`` endpoint."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable

import structlog

if TYPE_CHECKING:
    from ragcore.config.settings import Settings
    from ragcore.interfaces.content_storage import IContentStorage
    from ragcore.interfaces.job_queue import IJobQueue
    from ragcore.services.ingestion.embedding_client import EmbeddingClient

logger = structlog.get_logger(logger_name=__name__)


class HealthService:
    """Probes storage, embeddings and (in queue mode) the job queue.

    Each probe runs under ``health_timeout_seconds``.  A probe reports
    ``"healthy"``, ``"down"`` or ``"down:timeout"``; the overall ``ok`` is
    true only when every probe is healthy.
    """

    def __init__(
        self,
        settings: Settings,
        storage: IContentStorage,
        embedding_client: EmbeddingClient,
        queue: IJobQueue | None = None,
    ) -> None:
        self._settings = settings
        self._storage = storage
        self._embedding_client = embedding_client
        self._queue = queue

    async def check(self) -> dict[str, Any]:
        probes: dict[str, Awaitable[bool]] = {
            "storage": self._storage.health_check(),
            "embeddings": self._embedding_client.health_check(),
        }
        if self._queue is not None:
            probes["queue"] = self._queue.ping()

        names = list(probes)
        results = await asyncio.gather(*(self._probe(name, probes[name]) for name in names))
        report: dict[str, Any] = dict(zip(names, results))
        report["ok"] = all(result == "healthy" for result in results)
        report["env"] = {
            "ingest_mode": self._settings.rag_ingest_mode,
            "storage_mode": self._settings.storage_mode,
            "embedding_provider": self._settings.embedding_provider,
            "upload_max_mb": self._settings.upload_max_mb,
        }
        return report

    async def _probe(self, name: str, probe: Awaitable[bool]) -> str:
        try:
            healthy = await asyncio.wait_for(probe, timeout=self._settings.health_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("health_probe_timeout", probe=name)
            return "down:timeout"
        except Exception as exc:  # noqa: BLE001
            logger.warning("health_probe_failed", probe=name, error=str(exc))
            return "down"
        return "healthy" if healthy else "down"
