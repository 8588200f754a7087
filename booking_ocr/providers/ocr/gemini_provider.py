"""Google Gemini OCR provider.

Sends the document inline (base64) to the Gemini ``generateContent`` REST
endpoint over ``httpx`` and asks for a JSON answer holding the full text
plus the reservation fields it can see.  This makes Gemini the one provider
that returns structured data in the same call.

Model fallback is explicit: the configured primary model is tried first;
on a server error (5xx) the configured fallback model gets one attempt.
A request timeout is not a server error and goes straight back to the
orchestrator.
Quota errors are never retried here; they go back to the rate limiter.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from typing import Any

import httpx
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

_CONFIDENCE = 0.95
_FIELD_KEYS = (
    "guest_name",
    "guest_email",
    "guest_phone",
    "check_in_date",
    "check_out_date",
    "property_name",
    "total_amount",
    "num_guests",
    "platform",
    "reference",
)

_OCR_PROMPT = (
    "You are an OCR engine for accommodation booking documents. "
    "Transcribe ALL text in the document exactly as written, keeping line breaks. "
    "Then extract the reservation fields you can read. "
    "Answer with one JSON object with the keys: raw_text, language, "
    + ", ".join(_FIELD_KEYS)
    + ". Use null for fields that are not present. Dates as YYYY-MM-DD."
)

_FIELDS_PROMPT = (
    "Extract the reservation fields from the booking text below. "
    "Answer with one JSON object with the keys: "
    + ", ".join(_FIELD_KEYS)
    + ". Use null for fields that are not present. Dates as YYYY-MM-DD.\n\n"
)


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _clean_fields(payload: dict[str, Any]) -> dict[str, Any]:
    return {
        key: payload[key]
        for key in _FIELD_KEYS
        if payload.get(key) not in (None, "", [])
    }


class GeminiOCRProvider(IOCRProvider):
    """OCR via Google Gemini multimodal models.

    Parameters
    ----------
    settings:
        Supplies the API key (``GOOGLE_GEMINI_API_KEY`` or ``GOOGLE_API_KEY``),
        model names and base URL.
    http_client:
        Shared ``httpx.AsyncClient``; one is created when omitted.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._api_key = settings.gemini_api_key
        self._base_url = settings.gemini_base_url.rstrip("/")
        self._models = [m for m in (settings.gemini_model, settings.gemini_fallback_model) if m]
        self._http = http_client or httpx.AsyncClient(timeout=60.0)
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # IOCRProvider implementation
    # ------------------------------------------------------------------

    async def process(self, document: OCRDocument) -> OCRResult:
        if not (document.is_pdf or document.is_image):
            raise UnsupportedDocumentError(
                f"Unsupported MIME type {document.mime_type}", provider_name=self.get_provider_name(),
            )

        start = time.perf_counter()
        body = {
            "contents": [{
                "parts": [
                    {"text": _OCR_PROMPT},
                    {
                        "inline_data": {
                            "mime_type": document.mime_type,
                            "data": base64.b64encode(document.data).decode("ascii"),
                        }
                    },
                ]
            }],
            "generationConfig": {"temperature": 0.1, "responseMimeType": "application/json"},
        }
        answer, model = await self._generate(body)
        payload = self._decode_payload(answer)
        text = str(payload.get("raw_text") or "").strip() if payload else answer.strip()
        structured = _clean_fields(payload) if payload else None

        page_count = None
        if document.is_pdf:
            page_count = await asyncio.to_thread(pdf_tools.count_pages, document.data)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._logger.info(
            "ocr_extraction_complete",
            provider=self.get_provider_name(),
            model=model,
            chars=len(text),
            duration_ms=round(elapsed_ms, 1),
        )
        return OCRResult(
            success=True,
            text=text,
            confidence=_CONFIDENCE,
            processing_time_ms=elapsed_ms,
            provider=self.get_provider_name(),
            structured_data=structured or None,
            metadata=OCRMetadata(
                page_count=page_count,
                language=(payload or {}).get("language") or None,
                quality="high",
            ),
        )

    def get_provider_name(self) -> str:
        return "gemini"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def health_check(self) -> bool:
        if not self.is_available():
            return False
        try:
            response = await self._http.get(
                f"{self._base_url}/models/{self._models[0]}",
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.HTTPError as exc:
            self._logger.warning("provider_health_check_failed", provider="gemini", error=str(exc))
            return False
        return response.status_code == 200

    def supports_structured_extraction(self) -> bool:
        return True

    async def extract_fields(self, text: str) -> dict[str, Any]:
        body = {
            "contents": [{"parts": [{"text": _FIELDS_PROMPT + text}]}],
            "generationConfig": {"temperature": 0.1, "responseMimeType": "application/json"},
        }
        answer, _ = await self._generate(body)
        payload = self._decode_payload(answer)
        if payload is None:
            raise OCRExtractionError(
                "Gemini returned non-JSON field extraction", provider_name=self.get_provider_name(),
            )
        return _clean_fields(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _generate(self, body: dict[str, Any]) -> tuple[str, str]:
        """POST *body* to each model in turn; return ``(answer_text, model)``."""
        if not self.is_available():
            raise ProviderUnavailableError("Gemini API key not configured", provider_name="gemini")

        last_error: ProviderUnavailableError | None = None
        for model in self._models:
            try:
                return await self._generate_with(model, body), model
            except ProviderUnavailableError as exc:
                last_error = exc
                self._logger.warning("gemini_model_failed", model=model, error=exc.message)
        raise last_error or ProviderUnavailableError("No Gemini model configured", provider_name="gemini")

    async def _generate_with(self, model: str, body: dict[str, Any]) -> str:
        url = f"{self._base_url}/models/{model}:generateContent"
        try:
            response = await self._http.post(
                url, json=body, headers={"x-goog-api-key": self._api_key},
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"Gemini request timed out: {exc}", provider_name="gemini") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"Gemini request failed: {exc}", provider_name="gemini") from exc

        if response.status_code == 429:
            raise RateLimitError(
                "Gemini quota exceeded",
                provider_name="gemini",
                retry_after=_parse_retry_after(response),
            )
        if response.status_code >= 500:
            raise ProviderUnavailableError(
                f"Gemini server error {response.status_code} on {model}", provider_name="gemini",
            )
        if response.status_code >= 400:
            raise OCRExtractionError(
                f"Gemini rejected the request ({response.status_code}): {response.text[:200]}",
                provider_name="gemini",
            )

        try:
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise OCRExtractionError("Gemini returned an unexpected response", provider_name="gemini") from exc
        return "".join(str(part.get("text", "")) for part in parts)

    @staticmethod
    def _decode_payload(answer: str) -> dict[str, Any] | None:
        cleaned = answer.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.strip("`")
            if cleaned.lower().startswith("json"):
                cleaned = cleaned[4:]
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None
