"""Abstract base class for OCR provider adapters.

Each adapter wraps one backend (Gemini, OpenRouter, the local PDF text
layer) behind the same contract so the failover orchestrator can try them
in priority order without knowing which is which.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from booking_ocr.models.ocr import OCRDocument, OCRResult


# Concrete implementations: GeminiOCRProvider, OpenRouterOCRProvider, NativePDFProvider
# Located in: booking_ocr/providers/ocr/
class IOCRProvider(ABC):
    """Contract for OCR backends.

    Every concrete provider must be able to:
    * Accept an ``OCRDocument`` and return an ``OCRResult``.
    * Report whether it is configured (credentials present).
    * Probe the backend cheaply for the provider status endpoint.
    """

    @abstractmethod
    async def process(self, document: OCRDocument) -> OCRResult:
        """Extract text from *document*.

        Raises
        ------
        booking_ocr.utils.errors.RateLimitError
            On quota errors (HTTP 429); the limiter retries these.
        booking_ocr.utils.errors.ProviderUnavailableError
            On server or network errors.
        booking_ocr.utils.errors.UnsupportedDocumentError
            If the provider cannot accept this document at all.
        booking_ocr.utils.errors.OCRExtractionError
            If the backend answered but the answer is unusable.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the registry key of this provider, e.g. ``"gemini"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""

    async def health_check(self) -> bool:
        """Return ``True`` if the backend answers a lightweight probe.

        The default implementation only reports configuration state.
        """
        return self.is_available()

    def supports_structured_extraction(self) -> bool:
        """Return ``True`` if :meth:`extract_fields` is implemented."""
        return False

    async def extract_fields(self, text: str) -> dict[str, Any]:
        """Extract reservation fields from already-recognised *text*.

        Only providers with structured extraction override this.
        """
        raise NotImplementedError(f"{self.get_provider_name()} has no structured extraction")
