"""OCR provider implementations, tried in priority order by ocr_service.py.

    1. GeminiOCRProvider -- Google Gemini over REST; reads PDFs and images,
       handwriting included, and returns reservation fields in the same call.
    2. OpenRouterOCRProvider -- Mistral vision model through OpenRouter's
       OpenAI-compatible API; PDFs are rasterised first.
    3. NativePDFProvider -- PyMuPDF text layer; free and local, PDFs only.
"""

from booking_ocr.providers.ocr.gemini_provider import GeminiOCRProvider
from booking_ocr.providers.ocr.native_provider import NativePDFProvider
from booking_ocr.providers.ocr.openrouter_provider import OpenRouterOCRProvider

__all__ = ["GeminiOCRProvider", "NativePDFProvider", "OpenRouterOCRProvider"]
