"""Unit tests for the booking_ocr.cli.process command-line tool."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from booking_ocr.cli.process import _build_parser, _format_result, _options, main
from booking_ocr.models.ocr import OCRResult
from booking_ocr.models.provider import (
    BatchItemResult,
    BatchResult,
    BatchSummary,
    ProviderHealth,
)
from booking_ocr.services.provider_registry import ProviderRegistry
from booking_ocr.utils.errors import ProvidersExhaustedError
from tests.conftest import make_pdf_bytes, make_result, make_settings


def _components(registry: ProviderRegistry | None = None, **services) -> dict:
    service = MagicMock()
    service.process_document = services.get("process_document", AsyncMock(return_value=make_result("gemini")))
    service.get_provider_status = services.get("get_provider_status", AsyncMock(return_value=[]))
    coordinator = MagicMock()
    coordinator.max_documents = services.get("max_documents", 10)
    coordinator.batch_process = services.get("batch_process", AsyncMock())
    return {
        "settings": make_settings(),
        "ocr_service": service,
        "batch_coordinator": coordinator,
        "provider_registry": registry,
    }


def _run_cli(argv: list[str], components: dict) -> int:
    with patch("booking_ocr.main.build_services", return_value=components), patch(
        "booking_ocr.main.shutdown_services", new=AsyncMock()
    ) as shutdown:
        code = main(argv)
    shutdown.assert_awaited_once()
    return code


@pytest.fixture()
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "booking.pdf"
    path.write_bytes(make_pdf_bytes(["Booking confirmation"]))
    return path


class TestParser:
    def test_process_options(self) -> None:
        args = _build_parser().parse_args(
            ["process", "a.pdf", "--provider", "gemini", "--strategy", "quality", "--timeout", "12", "--json"]
        )
        options = _options(args)

        assert args.json is True
        assert options.preferred_provider == "gemini"
        assert options.strategy == "quality"
        assert options.timeout_seconds == 12.0
        assert options.require_high_quality is True

    def test_batch_allows_low_quality(self) -> None:
        args = _build_parser().parse_args(["batch", "a.pdf", "b.pdf", "--allow-low-quality"])
        options = _options(args)

        assert args.files == ["a.pdf", "b.pdf"]
        assert args.concurrency == 3
        assert options.require_high_quality is False
        assert options.timeout_seconds is None

    def test_batch_accepts_degraded_results_by_default(self) -> None:
        options = _options(_build_parser().parse_args(["batch", "a.pdf"]))

        assert options.require_high_quality is False

    def test_unknown_strategy_is_rejected(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["process", "a.pdf", "--strategy", "reckless"])


class TestFormatResult:
    def test_failed_result(self) -> None:
        text = _format_result("a.pdf", OCRResult.failure("all providers failed"))
        assert "FAILED: all providers failed" in text

    def test_fields_are_listed(self) -> None:
        result = make_result("gemini", structured_data={"guest_name": "John Smith"})
        text = _format_result("a.pdf", result)

        assert "Provider: gemini" in text
        assert "guest_name: John Smith" in text


class TestCommands:
    def test_process_prints_json(self, pdf_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        components = _components()

        code = _run_cli(["process", str(pdf_file), "--json"], components)

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["provider"] == "gemini"
        document, options = components["ocr_service"].process_document.await_args.args
        assert document.filename == "booking.pdf"
        assert options.require_high_quality is True

    def test_missing_file_exits_with_error(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        code = _run_cli(["process", str(tmp_path / "nope.pdf")], _components())

        assert code == 1
        assert "File not found" in capsys.readouterr().err

    def test_exhausted_providers_exit_with_error(
        self, pdf_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        components = _components(
            process_document=AsyncMock(side_effect=ProvidersExhaustedError({"gemini": "boom"}))
        )

        assert _run_cli(["process", str(pdf_file)], components) == 1
        assert "gemini: boom" in capsys.readouterr().err

    def test_batch_rejects_too_many_files(self, pdf_file: Path) -> None:
        components = _components(max_documents=1)

        assert _run_cli(["batch", str(pdf_file), str(pdf_file)], components) == 1
        components["batch_coordinator"].batch_process.assert_not_awaited()

    def test_batch_reports_summary(self, pdf_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        batch = BatchResult(
            summary=BatchSummary(
                total=2, successful=1, failed=1, processing_time_ms=2000.0, average_time_per_document_ms=1000.0,
            ),
            results=[
                BatchItemResult(document_id="d1", filename="booking.pdf", result=make_result("gemini")),
                BatchItemResult(document_id="d2", filename="booking.pdf", result=OCRResult.failure("boom")),
            ],
        )
        components = _components(batch_process=AsyncMock(return_value=batch))

        code = _run_cli(["batch", str(pdf_file), str(pdf_file), "--concurrency", "2"], components)

        assert code == 1
        assert "1/2 succeeded" in capsys.readouterr().out
        assert components["batch_coordinator"].batch_process.await_args.kwargs["concurrency"] == 2

    def test_providers_report(self, registry: ProviderRegistry, capsys: pytest.CaptureFixture[str]) -> None:
        status = ProviderHealth(
            name="gemini", display_name="Google Gemini", available=True, healthy=True, latency_ms=42.0, priority=1,
        )
        components = _components(registry, get_provider_status=AsyncMock(return_value=[status]))

        code = _run_cli(["providers"], components)

        assert code == 0
        out = capsys.readouterr().out
        assert "Google Gemini" in out
        assert "healthy" in out
        assert "42 ms" in out
