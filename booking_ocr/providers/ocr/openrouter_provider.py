"""OpenRouter (Mistral vision) OCR provider.

OpenRouter exposes an OpenAI-compatible API, so this adapter reuses the
``openai.AsyncOpenAI`` client pointed at the OpenRouter base URL.  The
vision model only accepts images: PDFs are rasterised page by page with
PyMuPDF before being sent.
"""

from __future__ import annotations

import asyncio
import base64
import time

import httpx
import openai
import structlog

from booking_ocr.config.settings import Settings
from booking_ocr.interfaces.ocr_provider import IOCRProvider
from booking_ocr.models.ocr import OCRDocument, OCRMetadata, OCRResult
from booking_ocr.utils import pdf_tools
from booking_ocr.utils.errors import (
    OCRExtractionError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    UnsupportedDocumentError,
)
from booking_ocr.utils.logging import get_logger

_CONFIDENCE = 0.85
_MAX_RENDERED_PAGES = 5
_TIMEOUT_SECONDS = 25.0

_PROMPT = (
    "Transcribe all text in these booking document pages exactly as written. "
    "Keep the original line breaks and reading order. Return only the text."
)


class OpenRouterOCRProvider(IOCRProvider):
    """OCR via a Mistral vision model served by OpenRouter.

    The SDK client never retries on its own: a 429 has to reach the rate
    limiter after one HTTP call, and transient failures are retried by the
    orchestrator.
    """

    def __init__(
        self,
        settings: Settings,
        client: openai.AsyncOpenAI | None = None,
        max_pages: int = _MAX_RENDERED_PAGES,
        timeout: float = _TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = settings.openrouter_api_key
        self._model = settings.openrouter_model
        self._max_pages = max_pages
        self._client = client or openai.AsyncOpenAI(
            base_url=settings.openrouter_base_url,
            # The SDK refuses an empty key; availability is checked separately.
            api_key=self._api_key or "unset",
            max_retries=0,
            timeout=timeout,
            http_client=http_client,
        )
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # IOCRProvider implementation
    # ------------------------------------------------------------------

    async def process(self, document: OCRDocument) -> OCRResult:
        if not self.is_available():
            raise ProviderUnavailableError("OpenRouter API key not configured", provider_name="openrouter")

        start = time.perf_counter()
        images, page_count = await self._images_for(document)
        content: list[dict] = [{"type": "text", "text": _PROMPT}]
        for mime_type, image in images:
            b64 = base64.b64encode(image).decode("ascii")
            content.append({"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}})

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": content}],
                temperature=0.1,
                max_tokens=4000,
            )
        except openai.RateLimitError as exc:
            raise RateLimitError(f"OpenRouter quota exceeded: {exc}", provider_name="openrouter") from exc
        except openai.APITimeoutError as exc:
            raise ProviderTimeoutError(f"OpenRouter request timed out: {exc}", provider_name="openrouter") from exc
        except openai.APIConnectionError as exc:
            raise ProviderUnavailableError(f"OpenRouter unreachable: {exc}", provider_name="openrouter") from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise ProviderUnavailableError(
                    f"OpenRouter server error {exc.status_code}", provider_name="openrouter",
                ) from exc
            raise OCRExtractionError(f"OpenRouter API error: {exc}", provider_name="openrouter") from exc
        except openai.APIError as exc:
            raise OCRExtractionError(f"OpenRouter API error: {exc}", provider_name="openrouter") from exc

        if not response.choices:
            raise OCRExtractionError("OpenRouter returned no choices", provider_name="openrouter")
        text = (response.choices[0].message.content or "").strip()

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._logger.info(
            "ocr_extraction_complete",
            provider=self.get_provider_name(),
            model=self._model,
            pages_sent=len(images),
            chars=len(text),
            duration_ms=round(elapsed_ms, 1),
        )
        return OCRResult(
            success=True,
            text=text,
            confidence=_CONFIDENCE,
            processing_time_ms=elapsed_ms,
            provider=self.get_provider_name(),
            metadata=OCRMetadata(page_count=page_count, quality="medium"),
        )

    def get_provider_name(self) -> str:
        return "openrouter"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def health_check(self) -> bool:
        if not self.is_available():
            return False
        try:
            await self._client.models.list()
        except openai.APIError as exc:
            self._logger.warning("provider_health_check_failed", provider="openrouter", error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _images_for(self, document: OCRDocument) -> tuple[list[tuple[str, bytes]], int | None]:
        if document.is_image:
            return [(document.mime_type, document.data)], 1
        if document.is_pdf:
            pages = await asyncio.to_thread(pdf_tools.render_pages_png, document.data, self._max_pages)
            if not pages:
                raise OCRExtractionError("PDF has no renderable pages", provider_name="openrouter")
            page_count = await asyncio.to_thread(pdf_tools.count_pages, document.data)
            return [("image/png", page) for page in pages], page_count
        raise UnsupportedDocumentError(
            f"Unsupported MIME type {document.mime_type}", provider_name="openrouter",
        )
