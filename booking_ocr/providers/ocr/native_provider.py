"""Native PDF text-layer provider.

Reads the embedded text layer with PyMuPDF.  No network, no credentials,
always available, but blind to scanned pages and images.  Confidence is a
flat 0.7 when any text was found and 0.1 otherwise.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from booking_ocr.interfaces.ocr_provider import IOCRProvider
from booking_ocr.models.ocr import OCRDocument, OCRMetadata, OCRResult
from booking_ocr.utils import pdf_tools
from booking_ocr.utils.errors import UnsupportedDocumentError
from booking_ocr.utils.logging import get_logger

_CONFIDENCE_WITH_TEXT = 0.7
_CONFIDENCE_EMPTY = 0.1


class NativePDFProvider(IOCRProvider):
    """Extracts the text layer of digital PDFs."""

    def __init__(self, max_pages: int | None = None) -> None:
        self._max_pages = max_pages
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def process(self, document: OCRDocument) -> OCRResult:
        if not document.is_pdf:
            raise UnsupportedDocumentError(
                "Native parser only reads PDF text layers", provider_name=self.get_provider_name(),
            )

        start = time.perf_counter()
        text, page_count = await asyncio.to_thread(pdf_tools.extract_text, document.data, self._max_pages)
        elapsed_ms = (time.perf_counter() - start) * 1000
        confidence = _CONFIDENCE_WITH_TEXT if text.strip() else _CONFIDENCE_EMPTY

        self._logger.info(
            "ocr_extraction_complete",
            provider=self.get_provider_name(),
            pages=page_count,
            chars=len(text),
            duration_ms=round(elapsed_ms, 1),
        )
        return OCRResult(
            success=True,
            text=text,
            confidence=confidence,
            processing_time_ms=elapsed_ms,
            provider=self.get_provider_name(),
            metadata=OCRMetadata(page_count=page_count, quality="low"),
        )

    def get_provider_name(self) -> str:
        return "native"

    def is_available(self) -> bool:
        return True
