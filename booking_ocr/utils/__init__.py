"""Utility modules for booking-ocr.

- **errors** -- exception hierarchy rooted at BookingOCRError.
- **logging** -- structlog setup (console in development, JSON in production).
- **backoff** -- exponential backoff with jitter for the queue and retries.
- **concurrency** -- semaphore-throttled gather and chunked gather.
- **image_preprocessor** -- resize/normalise/sharpen pass before OCR.
- **pdf_tools** (not re-exported here) -- PyMuPDF page count, text layer
  extraction and rasterisation.
"""

from booking_ocr.utils.backoff import attempt_delay, compute_backoff
from booking_ocr.utils.concurrency import gather_in_chunks, throttled_gather
from booking_ocr.utils.errors import (
    BookingOCRError,
    ConfigurationError,
    DocumentTimeoutError,
    DocumentTooLargeError,
    OCRExtractionError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProvidersExhaustedError,
    QueueFullError,
    RateLimitError,
    RetryLimitExceededError,
    UnsupportedDocumentError,
)
from booking_ocr.utils.image_preprocessor import ImagePreprocessor
from booking_ocr.utils.logging import configure_logging, get_logger

__all__ = [
    "BookingOCRError",
    "ConfigurationError",
    "DocumentTimeoutError",
    "DocumentTooLargeError",
    "ImagePreprocessor",
    "OCRExtractionError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ProvidersExhaustedError",
    "QueueFullError",
    "RateLimitError",
    "RetryLimitExceededError",
    "UnsupportedDocumentError",
    "attempt_delay",
    "compute_backoff",
    "configure_logging",
    "gather_in_chunks",
    "get_logger",
    "throttled_gather",
]
