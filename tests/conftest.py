"""Shared pytest fixtures for the booking-ocr test suite."""

from __future__ import annotations

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import fitz
import pytest
from PIL import Image, ImageDraw

from booking_ocr.config.ocr_config import OCRConfig
from booking_ocr.config.settings import Settings
from booking_ocr.interfaces.ocr_provider import IOCRProvider
from booking_ocr.models.ocr import OCRDocument, OCRMetadata, OCRResult
from booking_ocr.services.provider_registry import ProviderRegistry

# Scores 100 with the default quality policy at confidence >= 0.8.
BOOKING_TEXT = (
    "Booking confirmation for guest John Smith at Sea View Apartment. "
    "Check-in 2024-05-01, check-out 2024-05-05. Total EUR 450."
)

# Short, no indicators: scores 30 at confidence 0.5.
POOR_TEXT = "scan noise here"


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Deterministic monotonic clock whose ``sleep`` advances time.

    ``sleep`` yields to the event loop once before advancing, so tasks that
    were scheduled at the current instant run (and observe the current time)
    before the clock moves on.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)
        self.now += max(seconds, 0.0)

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


async def settle(rounds: int = 10) -> None:
    """Let pending tasks on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def make_pdf_bytes(lines: list[str], pages: int = 1) -> bytes:
    """Build a real PDF with a text layer using PyMuPDF."""
    doc = fitz.open()
    for _ in range(pages):
        page = doc.new_page()
        y = 72
        for line in lines:
            page.insert_text((72, y), line, fontsize=11)
            y += 16
    data = doc.tobytes()
    doc.close()
    return data


def make_png_bytes(width: int = 200, height: int = 120, text: str = "Check-in 01/05/2024") -> bytes:
    img = Image.new("RGB", (width, height), color=(255, 255, 255))
    ImageDraw.Draw(img).text((10, 10), text, fill=(0, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def pdf_document() -> OCRDocument:
    return OCRDocument.from_bytes(
        make_pdf_bytes(["Booking confirmation", "Check-in: 2024-05-01"]),
        filename="booking.pdf",
    )


@pytest.fixture()
def image_document() -> OCRDocument:
    return OCRDocument.from_bytes(make_png_bytes(), filename="photo.png")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "google_gemini_api_key": "test-gemini-key",
        "openrouter_api_key": "test-openrouter-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def ocr_config() -> OCRConfig:
    return OCRConfig()


@pytest.fixture()
def registry(ocr_config: OCRConfig, settings: Settings) -> ProviderRegistry:
    return ProviderRegistry(ocr_config, settings)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


def make_result(
    provider: str,
    text: str = BOOKING_TEXT,
    confidence: float = 0.95,
    structured_data: dict | None = None,
) -> OCRResult:
    return OCRResult(
        success=True,
        text=text,
        confidence=confidence,
        processing_time_ms=12.0,
        provider=provider,
        structured_data=structured_data,
        metadata=OCRMetadata(page_count=1, quality="high"),
    )


def make_provider(
    name: str,
    *,
    result: OCRResult | None = None,
    side_effect=None,
    structured: bool = False,
    fields: dict | None = None,
    healthy: bool = True,
) -> MagicMock:
    """Mock ``IOCRProvider`` returning *result* or raising via *side_effect*."""
    mock = MagicMock(spec=IOCRProvider)
    mock.get_provider_name.return_value = name
    mock.is_available.return_value = True
    mock.supports_structured_extraction.return_value = structured
    mock.health_check = AsyncMock(return_value=healthy)
    mock.extract_fields = AsyncMock(return_value=fields or {})
    if side_effect is not None:
        mock.process = AsyncMock(side_effect=side_effect)
    else:
        mock.process = AsyncMock(return_value=result or make_result(name))
    return mock
