"""ragcore FastAPI application entry point.

Loads settings from the environment / ``.env``, configures structured
logging, and wires providers and services onto ``app.state`` during the
lifespan startup.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from ragcore.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from ragcore.api.routes import router as api_router
from ragcore.bootstrap import build_components, close_components, initialize_components
from ragcore.config.settings import Settings
from ragcore.utils.logging import configure_logging, get_logger

_VERSION = "0.1.0"

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Build and initialise all components on startup, release them on shutdown."""
    components = build_components(settings)
    await initialize_components(components)

    for key, value in components.items():
        setattr(application.state, key, value)

    _logger.info(
        "app_startup",
        version=_VERSION,
        environment=settings.app_env,
        ingest_mode=settings.rag_ingest_mode,
        storage_mode=settings.storage_mode,
        embedding_provider=components["embedding_client"].provider_name,
    )

    yield

    await close_components(components)
    _logger.info("app_shutdown")


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="ragcore API",
        version=_VERSION,
        description=(
            "Upload documents into collections, ingest them into a vector "
            "store, and run similarity search scoped to collections."
        ),
        lifespan=_lifespan,
    )

    # Last added runs first.
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "ragcore.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
