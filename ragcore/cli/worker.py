"""Queue worker process for ``RAG_INGEST_MODE=queue`` deployments.

Usage::

    python -m ragcore.cli.worker [--concurrency 5]

Runs until SIGINT/SIGTERM, then stops reserving jobs and waits for the
in-flight ones to finish.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from ragcore.bootstrap import build_components, close_components, initialize_components
from ragcore.config.settings import Settings
from ragcore.services.ingestion.worker import IngestionWorker
from ragcore.utils.errors import QueueUnavailableError
from ragcore.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def run_worker(app_settings: Settings, concurrency: int | None = None) -> int:
    components = build_components(app_settings)
    if components["queue"] is None:
        logger.error("worker_requires_queue_mode", ingest_mode=app_settings.rag_ingest_mode)
        return 1

    try:
        await initialize_components(components, require_queue=True)
    except QueueUnavailableError as exc:
        logger.error("worker_queue_unavailable", error=exc.message)
        await close_components(components)
        return 1

    worker = IngestionWorker(
        queue=components["queue"],
        orchestrator=components["orchestrator"],
        concurrency=concurrency or app_settings.worker_concurrency,
        poll_timeout=app_settings.worker_poll_timeout_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await close_components(components)
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="ragcore-worker", description="Process queued ingestion jobs.")
    parser.add_argument("--concurrency", type=int, default=None, help="Jobs processed at once")
    args = parser.parse_args(argv)

    app_settings = Settings(rag_ingest_mode="queue")
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )
    sys.exit(asyncio.run(run_worker(app_settings, args.concurrency)))


if __name__ == "__main__":
    main()
