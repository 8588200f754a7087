"""API middleware: CORS, request logging and error handling.

Starlette runs middleware last-added-first, so ``main.create_app`` adds
``ErrorHandlingMiddleware`` before ``RequestLoggingMiddleware``; the logger
then sees the final status code of converted errors.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from booking_ocr.api.schemas import ErrorResponse
from booking_ocr.utils.errors import (
    BookingOCRError,
    ConfigurationError,
    DocumentTimeoutError,
    DocumentTooLargeError,
    ProvidersExhaustedError,
    QueueFullError,
    RateLimitError,
    RetryLimitExceededError,
    UnsupportedDocumentError,
)
from booking_ocr.utils.logging import bind_request_context, clear_request_context, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# First match wins; anything else is a 500.
_STATUS_CODES: tuple[tuple[type[BookingOCRError], int], ...] = (
    (DocumentTooLargeError, 413),
    (UnsupportedDocumentError, 400),
    (DocumentTimeoutError, 504),
    (RateLimitError, 429),
    (RetryLimitExceededError, 429),
    (QueueFullError, 503),
    (ConfigurationError, 503),
    (ProvidersExhaustedError, 500),
)


def status_code_for(exc: BookingOCRError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Allow browser clients from *allowed_origins* (``CORS_ORIGINS``).

    Credentials are only allowed with an explicit origin list; browsers
    reject ``*`` together with credentials.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one ``http_request`` event per request.

    Method and path are bound to the logging context for the duration of the
    request, so events from the orchestrator and the rate limiters can be
    tied back to the endpoint that caused them.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        clear_request_context()
        bind_request_context(http_method=request.method, http_path=request.url.path)
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            _logger.info(
                "http_request",
                status=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                client=request.client.host if request.client else None,
            )
            clear_request_context()


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``BookingOCRError`` subclasses into JSON :class:`ErrorResponse` bodies.

    Stack traces stay in the server log; the client gets the error class
    name, its message and the provider involved, if any.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except BookingOCRError as exc:
            status_code = status_code_for(exc)
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
                provider=exc.provider_name,
            )
            return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))
