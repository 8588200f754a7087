"""Integration tests for BatchCoordinator."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_ocr.models.ocr import OCRDocument, ProcessOptions
from booking_ocr.services.batch_coordinator import BatchCoordinator
from booking_ocr.utils.errors import ProvidersExhaustedError
from tests.conftest import make_pdf_bytes, make_result


def _documents(count: int) -> list[OCRDocument]:
    return [
        OCRDocument.from_bytes(make_pdf_bytes([f"Booking {n}"]), filename=f"doc{n}.pdf", document_id=f"d{n}")
        for n in range(count)
    ]


class _FakeService:
    """Stands in for OCRMultiProviderService with per-document delays."""

    def __init__(self, delays: dict[str, float] | None = None, failing: set[str] | None = None) -> None:
        self._delays = delays or {}
        self._failing = failing or set()
        self.active = 0
        self.peak = 0
        self.options: list[ProcessOptions | None] = []

    async def process_document(self, document: OCRDocument, options: ProcessOptions | None = None):
        self.options.append(options)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self._delays.get(document.id, 0))
            if document.id in self._failing:
                raise ProvidersExhaustedError({"gemini": "down"})
            return make_result("gemini", text=f"text of {document.filename}")
        finally:
            self.active -= 1


class TestBatchCoordinator:
    @pytest.mark.asyncio()
    async def test_results_keep_input_order(self) -> None:
        service = _FakeService(delays={"d0": 0.03, "d1": 0.0, "d2": 0.01})
        batch = await BatchCoordinator(service).batch_process(_documents(3), concurrency=3)

        assert [item.document_id for item in batch.results] == ["d0", "d1", "d2"]
        assert [item.result.text for item in batch.results] == [
            "text of doc0.pdf",
            "text of doc1.pdf",
            "text of doc2.pdf",
        ]
        assert batch.summary.total == 3
        assert batch.summary.successful == 3
        assert batch.summary.failed == 0

    @pytest.mark.asyncio()
    async def test_failure_does_not_abort_batch(self) -> None:
        service = _FakeService(failing={"d1"})
        batch = await BatchCoordinator(service).batch_process(_documents(3))

        failed = batch.results[1]
        assert failed.result.success is False
        assert "gemini: down" in failed.result.error
        assert failed.filename == "doc1.pdf"
        assert batch.summary.successful == 2
        assert batch.summary.failed == 1

    @pytest.mark.asyncio()
    async def test_concurrency_is_capped(self) -> None:
        service = _FakeService(delays={f"d{n}": 0.01 for n in range(5)})
        await BatchCoordinator(service).batch_process(_documents(5), concurrency=2)

        assert service.peak == 2

    @pytest.mark.asyncio()
    async def test_default_concurrency(self) -> None:
        service = _FakeService(delays={f"d{n}": 0.01 for n in range(7)})
        await BatchCoordinator(service, default_concurrency=3).batch_process(_documents(7))

        assert service.peak == 3

    @pytest.mark.asyncio()
    async def test_options_reach_every_document(self) -> None:
        service = _FakeService()
        options = ProcessOptions(strategy="fast")

        await BatchCoordinator(service).batch_process(_documents(2), options=options)

        assert service.options == [options, options]

    @pytest.mark.asyncio()
    async def test_negative_concurrency_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            await BatchCoordinator(MagicMock()).batch_process(_documents(1), concurrency=-1)

    @pytest.mark.asyncio()
    async def test_zero_concurrency_is_rejected(self) -> None:
        service = MagicMock()
        service.process_document = AsyncMock()

        with pytest.raises(ValueError):
            await BatchCoordinator(service, default_concurrency=3).batch_process(_documents(2), concurrency=0)
        service.process_document.assert_not_called()

    @pytest.mark.asyncio()
    async def test_empty_batch(self) -> None:
        batch = await BatchCoordinator(_FakeService()).batch_process([])

        assert batch.results == []
        assert batch.summary.total == 0
        assert batch.summary.average_time_per_document_ms == 0.0

    def test_max_documents(self) -> None:
        assert BatchCoordinator(MagicMock(), max_documents=4).max_documents == 4
