"""API middleware: CORS, request logging, and error handling.

Starlette middleware runs last-added first, so ``create_app`` adds
:class:`ErrorHandlingMiddleware` before :class:`RequestLoggingMiddleware`
and the logger sees the final status code of converted errors.
"""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ragcore.api.schemas import ErrorResponse
from ragcore.utils.errors import (
    CollectionCapacityError,
    CollectionNotFoundError,
    ConfigurationError,
    DocumentNotFoundError,
    EmbeddingProviderError,
    InvalidStatusTransitionError,
    ProviderUnavailableError,
    QueueUnavailableError,
    RagCoreError,
    RateLimitError,
    StorageUnavailableError,
)
from ragcore.utils.logging import get_logger, log_context

_logger: structlog.BoundLogger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# First match wins; subclasses must precede their bases.
_STATUS_BY_ERROR: tuple[tuple[type[RagCoreError], int], ...] = (
    (DocumentNotFoundError, 404),
    (CollectionNotFoundError, 404),
    (CollectionCapacityError, 409),
    (InvalidStatusTransitionError, 409),
    (ConfigurationError, 409),
    (RateLimitError, 429),
    (StorageUnavailableError, 503),
    (QueueUnavailableError, 503),
    (ProviderUnavailableError, 503),
    (EmbeddingProviderError, 502),
)


def status_for_error(exc: RagCoreError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Parameters
    ----------
    app:
        The FastAPI application instance.
    allowed_origins:
        Explicit list of allowed origins.  Defaults to ``["*"]`` for
        development; override with specific origins in production.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one ``http_request`` line per request, tagged with a request id.

    The id is taken from an incoming ``X-Request-ID`` header or generated,
    bound to everything logged while the request is handled, and echoed
    back on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        status_code = 500

        with log_context(request_id=request_id):
            try:
                response = await call_next(request)
                status_code = response.status_code
                response.headers[REQUEST_ID_HEADER] = request_id
                return response
            finally:
                _logger.info(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=status_code,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``RagCoreError`` subclasses into structured JSON errors.

    The status code follows the error type (404 for unknown documents and
    collections, 409 for capacity and state conflicts, 503 when a backing
    service is down, 500 otherwise).  Stack traces stay in the server log.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except RagCoreError as exc:
            status_code = status_for_error(exc)
            log = _logger.error if status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            body = ErrorResponse(
                error=type(exc).__name__,
                detail=exc.message,
            )
            return JSONResponse(
                status_code=status_code,
                content=body.model_dump(),
            )
