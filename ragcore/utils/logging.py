"""Structured logging setup using structlog.

The API server, the ingestion worker and the CLI each call
:func:`configure_logging` once at startup.  Console output is coloured in
development; ``APP_ENV=production`` (or ``json_output=True``) switches to
one JSON object per line.

Standard-library records (uvicorn, httpx, aiosqlite, redis) go through the
same processor chain.  :func:`log_context` binds keys such as ``job_id``
for everything logged inside a block, including nested service calls.
"""

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

# Third-party loggers that are chatty at DEBUG/INFO.
_QUIET_LOGGERS = ("aiosqlite", "httpcore", "openai._base_client")


def _renderer(use_json: bool) -> structlog.types.Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog and bridge stdlib logging into it.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: Force JSON lines.  Otherwise JSON is used only when
                     ``APP_ENV`` is ``production``.

    Returns:
        A configured structlog BoundLogger.
    """
    level_name = log_level.upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level, level_name = logging.INFO, "INFO"

    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"
    renderer = _renderer(use_json)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if use_json:
        pre_chain.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*pre_chain, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level_name)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, level))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a logger bound to *name*, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind *values* to every log line emitted inside the ``with`` block.

    Bindings live in :mod:`contextvars`, so each asyncio task keeps its own
    set and concurrent jobs never see each other's keys.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield
