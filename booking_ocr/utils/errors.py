"""Custom exception hierarchy for booking-ocr.

All application exceptions inherit from :class:`BookingOCRError`, which
carries an optional ``provider_name`` so error handlers can identify which
OCR backend (e.g. "gemini", "openrouter", "native") caused the failure.

    BookingOCRError  (base)
    +-- OCRExtractionError        (provider returned an unusable response)
    +-- UnsupportedDocumentError  (provider cannot accept this document)
    +-- ProviderUnavailableError  (5xx / network, transient)
    +-- RateLimitError            (quota exceeded, HTTP 429)
    +-- ProviderTimeoutError      (single attempt exceeded its timeout)
    +-- RetryLimitExceededError   (queue gave up after repeated rate limits)
    +-- QueueFullError            (limiter queue at capacity)
    +-- ProvidersExhaustedError   (every provider failed, nothing to return)
    +-- DocumentTimeoutError      (whole-document deadline elapsed)
    +-- DocumentTooLargeError     (upload over the configured size cap)
    +-- ConfigurationError        (startup / missing config)

Transient and quota errors are absorbed by the rate limiter and the
failover orchestrator; only exhaustion, timeouts and input errors reach
the API layer.
"""

from __future__ import annotations


class BookingOCRError(Exception):
    """Base exception for all booking-ocr errors.

    ``__str__`` prefixes the provider name in brackets, e.g.
    ``[gemini] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Provider call errors
# ---------------------------------------------------------------------------

class OCRExtractionError(BookingOCRError):
    """Raised when a provider answers but the response cannot be used."""

    def __init__(
        self,
        message: str = "OCR text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedDocumentError(BookingOCRError):
    """Raised when a provider cannot process the document's MIME type or size."""

    def __init__(
        self,
        message: str = "Document type not supported by provider",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(BookingOCRError):
    """Raised when a provider is unreachable or returns a server error.

    The failover orchestrator treats this as transient: the attempt is
    retried on the same provider and then the next provider is tried.
    """

    def __init__(
        self,
        message: str = "OCR provider is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(BookingOCRError):
    """Raised when a provider rejects a call because of quota (HTTP 429).

    The rate limiter re-enqueues the call with a bumped priority and backs
    off before dispatching again.
    """

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.retry_after = retry_after


class ProviderTimeoutError(BookingOCRError):
    """Raised when a single provider attempt exceeds its timeout."""

    def __init__(
        self,
        message: str = "OCR provider timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Queue errors
# ---------------------------------------------------------------------------

class RetryLimitExceededError(BookingOCRError):
    """Raised when a queued call keeps hitting rate limits past ``max_retries``."""

    def __init__(
        self,
        message: str = "Retry limit exceeded after repeated throttling",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class QueueFullError(BookingOCRError):
    """Raised when a limiter queue is already holding ``max_queue_size`` items."""

    def __init__(
        self,
        message: str = "Request queue is full",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration errors
# ---------------------------------------------------------------------------

class ProvidersExhaustedError(BookingOCRError):
    """Raised when every provider failed and no partial text exists.

    ``failures`` maps provider name to the reason it was abandoned, in the
    order the providers were tried.
    """

    def __init__(
        self,
        failures: dict[str, str] | None = None,
        message: str | None = None,
    ) -> None:
        self.failures: dict[str, str] = dict(failures or {})
        if message is None:
            if self.failures:
                detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures.items())
                message = f"All OCR providers failed ({detail})"
            else:
                message = "No OCR provider could process the document"
        super().__init__(message=message, provider_name=None)


class DocumentTimeoutError(BookingOCRError):
    """Raised when the whole-document processing deadline elapses."""

    def __init__(
        self,
        message: str = "Document processing timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DocumentTooLargeError(BookingOCRError):
    """Raised when an uploaded document exceeds the configured size cap."""

    def __init__(
        self,
        message: str = "Document exceeds the maximum upload size",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(BookingOCRError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
