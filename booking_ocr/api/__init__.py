"""booking-ocr API layer: routes, schemas and middleware."""

from booking_ocr.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from booking_ocr.api.routes import router
from booking_ocr.api.schemas import (
    BatchResponse,
    ErrorResponse,
    ProcessResponse,
    ProvidersResponse,
    StatusResponse,
    ValidateResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "BatchResponse",
    "ErrorResponse",
    "ProcessResponse",
    "ProvidersResponse",
    "StatusResponse",
    "ValidateResponse",
]
