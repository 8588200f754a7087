"""Integration tests for the OCR API endpoints using TestClient."""

from __future__ import annotations

import base64
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from booking_ocr.config.ocr_config import OCRConfig, ProviderConfig
from booking_ocr.main import create_app
from booking_ocr.models.ocr import OCRDocument, OCRResult, ProcessOptions
from booking_ocr.models.provider import ProviderHealth
from booking_ocr.services.batch_coordinator import BatchCoordinator
from booking_ocr.services.handwriting_detector import HandwritingDetector
from booking_ocr.services.ocr_service import OCRMultiProviderService
from booking_ocr.services.provider_registry import ProviderRegistry
from booking_ocr.services.quality_validator import QualityValidator
from booking_ocr.services.rate_limiter import RateLimiterService
from booking_ocr.utils.errors import (
    ConfigurationError,
    DocumentTimeoutError,
    ProvidersExhaustedError,
)
from tests.conftest import (
    BOOKING_TEXT,
    POOR_TEXT,
    make_pdf_bytes,
    make_png_bytes,
    make_provider,
    make_result,
    make_settings,
)

_FIELDS = {"guest_name": "John Smith", "check_in_date": "2024-05-01"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _accepted_result(provider: str = "gemini") -> OCRResult:
    result = make_result(provider, structured_data=dict(_FIELDS))
    return result.model_copy(update={"validation": QualityValidator().validate(result)})


def _mock_service(registry: ProviderRegistry) -> MagicMock:
    service = MagicMock(spec=OCRMultiProviderService)
    service.registry = registry
    service.process_document = AsyncMock(return_value=_accepted_result())
    service.get_provider_status = AsyncMock(return_value=[])
    service.get_statistics = MagicMock(return_value={"queue_length": 0, "max_concurrent": 5})
    service.close = AsyncMock()
    return service


def _real_service(registry: ProviderRegistry, providers: dict) -> OCRMultiProviderService:
    """Orchestrator with real limiters and quality gate over mock adapters."""
    detector = MagicMock(spec=HandwritingDetector)
    detector.score.return_value = 0.0
    detector.threshold = 0.4
    limiters = {
        d.name: RateLimiterService(d.name, requests_per_minute=1000) for d in registry.list_all()
    }
    return OCRMultiProviderService(
        registry, providers, limiters, QualityValidator(), detector, None, sleep=AsyncMock(),
    )


def _create_test_app(service: MagicMock, registry: ProviderRegistry, **settings_overrides) -> FastAPI:
    settings = make_settings(**settings_overrides)
    components = {
        "settings": settings,
        "provider_registry": registry,
        "ocr_service": service,
        "quality_validator": QualityValidator(),
        "batch_coordinator": BatchCoordinator(service, max_documents=settings.max_batch_documents),
    }
    return create_app(settings, components)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture()
def service(registry: ProviderRegistry) -> MagicMock:
    return _mock_service(registry)


@pytest.fixture()
def client(service: MagicMock, registry: ProviderRegistry):
    with TestClient(_create_test_app(service, registry)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# POST /api/ocr/process
# ---------------------------------------------------------------------------


class TestProcessEndpoint:
    def test_json_upload(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/api/ocr/process",
            json={"fileBase64": _b64(make_pdf_bytes(["Booking"])), "fileName": "booking.pdf"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["requestId"].startswith("ocr_")
        assert data["provider"] == "gemini"
        assert data["text"] == BOOKING_TEXT
        assert data["textLength"] == len(BOOKING_TEXT)
        assert data["structuredData"] == _FIELDS
        assert data["missingFields"] == ["check_out_date", "property_name"]
        assert data["metadata"]["fileName"] == "booking.pdf"
        assert data["metadata"]["mimeType"] == "application/pdf"
        assert data["metadata"]["documentType"] == "booking_pdf"
        assert data["metadata"]["fileSize"].endswith("MB")
        assert data["validation"]["isValid"] is True
        assert data["validation"]["qualityScore"] == 100

        document, options = service.process_document.await_args.args
        assert isinstance(document, OCRDocument)
        assert options.require_high_quality is True
        assert options.timeout_seconds is None

    def test_json_options(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/api/ocr/process?provider=openrouter",
            json={
                "fileBase64": _b64(make_pdf_bytes(["Booking"])),
                "timeout": 5000,
                "requireHighQuality": False,
                "strategy": "fast",
            },
        )

        assert response.status_code == 200
        options: ProcessOptions = service.process_document.await_args.args[1]
        assert options.preferred_provider == "openrouter"
        assert options.timeout_seconds == 5.0
        assert options.require_high_quality is False
        assert options.strategy == "fast"

    def test_multipart_upload(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/api/ocr/process",
            files={"file": ("scan.png", make_png_bytes(), "image/png")},
            data={"documentType": "handwritten", "requireHighQuality": "false"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["metadata"]["documentType"] == "handwritten"
        assert data["metadata"]["mimeType"] == "image/png"
        assert data["missingFields"] == []

        document, options = service.process_document.await_args.args
        assert document.filename == "scan.png"
        assert options.document_type == "handwritten"
        assert options.require_high_quality is False

    def test_missing_file(self, client: TestClient) -> None:
        response = client.post("/api/ocr/process", json={})

        assert response.status_code == 400
        assert response.json()["detail"].startswith("No file provided")

    def test_invalid_base64(self, client: TestClient) -> None:
        response = client.post("/api/ocr/process", json={"fileBase64": "!!!not-base64"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "UnsupportedDocumentError"

    def test_oversized_payload(self, service: MagicMock, registry: ProviderRegistry) -> None:
        with TestClient(_create_test_app(service, registry, max_upload_mb=1)) as client:
            response = client.post("/api/ocr/process", json={"fileBase64": "A" * (2 * 1024 * 1024)})

        assert response.status_code == 413
        assert response.json()["error"] == "DocumentTooLargeError"
        service.process_document.assert_not_awaited()

    def test_exhausted_providers(self, client: TestClient, service: MagicMock) -> None:
        service.process_document.side_effect = ProvidersExhaustedError({"gemini": "down", "native": "blank"})

        response = client.post("/api/ocr/process", json={"fileBase64": _b64(make_pdf_bytes(["x"]))})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "ProvidersExhaustedError"
        assert "gemini: down" in body["detail"]

    def test_document_timeout(self, client: TestClient, service: MagicMock) -> None:
        service.process_document.side_effect = DocumentTimeoutError("too slow")

        response = client.post("/api/ocr/process", json={"fileBase64": _b64(make_pdf_bytes(["x"]))})

        assert response.status_code == 504
        assert response.json()["detail"] == "too slow"

    def test_failed_result(self, client: TestClient, service: MagicMock) -> None:
        service.process_document.return_value = OCRResult.failure("nothing readable")

        response = client.post("/api/ocr/process", json={"fileBase64": _b64(make_pdf_bytes(["x"]))})

        assert response.status_code == 500
        assert response.json()["detail"] == "nothing readable"


# ---------------------------------------------------------------------------
# POST /api/ocr/batch
# ---------------------------------------------------------------------------


class TestBatchEndpoint:
    def test_json_batch_keeps_order(self, client: TestClient, service: MagicMock) -> None:
        def outcome(document: OCRDocument, options: ProcessOptions) -> OCRResult:
            if document.id == "b":
                raise ProvidersExhaustedError({"gemini": "down"})
            return _accepted_result()

        service.process_document.side_effect = outcome
        pdf = _b64(make_pdf_bytes(["Booking"]))

        response = client.post(
            "/api/ocr/batch",
            json={
                "documents": [
                    {"fileBase64": pdf, "id": "a", "fileName": "a.pdf"},
                    {"fileBase64": pdf, "id": "b", "fileName": "b.pdf"},
                    {"fileBase64": pdf, "id": "c", "fileName": "c.pdf"},
                ],
                "concurrency": 2,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert [r["documentId"] for r in data["results"]] == ["a", "b", "c"]
        assert [r["success"] for r in data["results"]] == [True, False, True]
        assert "gemini: down" in data["results"][1]["error"]
        assert data["results"][0]["missingFields"] == ["check_out_date", "property_name"]
        assert data["summary"]["total"] == 3
        assert data["summary"]["successful"] == 2
        assert data["summary"]["failed"] == 1
        _, options = service.process_document.await_args.args
        assert options.require_high_quality is False

    def test_multipart_batch(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/api/ocr/batch",
            files=[
                ("files", ("a.pdf", make_pdf_bytes(["A"]), "application/pdf")),
                ("files", ("b.png", make_png_bytes(), "image/png")),
            ],
            data={"concurrency": "2"},
        )

        assert response.status_code == 200
        assert [r["fileName"] for r in response.json()["results"]] == ["a.pdf", "b.png"]
        _, options = service.process_document.await_args.args
        assert options.require_high_quality is False

    def test_too_many_documents(self, client: TestClient, service: MagicMock) -> None:
        documents = [{"fileBase64": "JVBERg=="} for _ in range(11)]

        response = client.post("/api/ocr/batch", json={"documents": documents})

        assert response.status_code == 400
        assert "Maximum 10 documents" in response.json()["detail"]
        service.process_document.assert_not_awaited()

    def test_empty_batch(self, client: TestClient) -> None:
        response = client.post("/api/ocr/batch", json={"documents": []})

        assert response.status_code == 400
        assert response.json()["detail"] == "No documents provided for batch processing"

    def test_concurrency_out_of_range(self, client: TestClient) -> None:
        response = client.post(
            "/api/ocr/batch", json={"documents": [{"fileBase64": "JVBERg=="}], "concurrency": 50},
        )
        assert response.status_code == 400

    def test_degraded_first_result_is_accepted(self, registry: ProviderRegistry) -> None:
        providers = {
            "gemini": make_provider("gemini", result=make_result("gemini", POOR_TEXT, confidence=0.5)),
            "openrouter": make_provider("openrouter"),
            "native": make_provider("native"),
        }
        service = _real_service(registry, providers)
        pdf = _b64(make_pdf_bytes(["Booking"]))

        with TestClient(_create_test_app(service, registry)) as client:
            response = client.post("/api/ocr/batch", json={"documents": [{"fileBase64": pdf, "id": "a"}]})

        assert response.status_code == 200
        [item] = response.json()["results"]
        assert item["success"] is True
        assert item["provider"] == "gemini"
        assert item["text"] == POOR_TEXT
        providers["gemini"].process.assert_awaited_once()
        providers["openrouter"].process.assert_not_awaited()
        providers["native"].process.assert_not_awaited()


# ---------------------------------------------------------------------------
# Introspection endpoints
# ---------------------------------------------------------------------------


class TestIntrospectionEndpoints:
    def test_providers(self, client: TestClient, service: MagicMock) -> None:
        service.get_provider_status.return_value = [
            ProviderHealth(
                name="gemini", display_name="Google Gemini", available=True, healthy=True, latency_ms=40.0, priority=1,
            ),
        ]

        response = client.get("/api/ocr/providers")

        assert response.status_code == 200
        data = response.json()
        assert data["providers"][0]["name"] == "gemini"
        assert data["providers"][0]["healthy"] is True
        assert data["availableProviders"] == ["gemini", "openrouter", "native"]
        assert data["configuration"]["valid"] is True
        assert data["statistics"]["max_concurrent"] == 5

    def test_status(self, client: TestClient) -> None:
        response = client.get("/api/ocr/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "operational"
        assert data["version"] == "0.1.0"
        assert datetime.fromisoformat(data["timestamp"]).tzinfo is not None
        assert data["configuration"]["availableProviders"] == ["gemini", "openrouter", "native"]

    def test_cors_header(self, client: TestClient) -> None:
        response = client.get("/api/ocr/status", headers={"Origin": "https://example.org"})
        assert response.headers["access-control-allow-origin"] == "*"


# ---------------------------------------------------------------------------
# POST /api/ocr/validate
# ---------------------------------------------------------------------------


class TestValidateEndpoint:
    def test_good_text(self, client: TestClient, service: MagicMock) -> None:
        response = client.post("/api/ocr/validate", json={"text": BOOKING_TEXT, "confidence": 0.95})

        assert response.status_code == 200
        data = response.json()
        assert data["validation"]["isValid"] is True
        assert data["validation"]["qualityScore"] == 100
        assert data["recommendations"] == ["Text quality is good; no action needed"]
        service.process_document.assert_not_awaited()

    def test_poor_text(self, client: TestClient) -> None:
        response = client.post("/api/ocr/validate", json={"text": "scan noise here", "confidence": 0.5})

        data = response.json()
        assert data["validation"]["isValid"] is False
        assert data["validation"]["qualityScore"] == 30
        assert "Reprocess the document with a higher-quality provider" in data["recommendations"]

    def test_empty_text(self, client: TestClient) -> None:
        response = client.post("/api/ocr/validate", json={"text": ""})

        assert response.status_code == 400
        assert response.json()["detail"] == "Text is required for validation"

    def test_confidence_out_of_range(self, client: TestClient) -> None:
        response = client.post("/api/ocr/validate", json={"text": "abc", "confidence": 2})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


class TestLifespan:
    def test_services_closed_on_shutdown(self, service: MagicMock, registry: ProviderRegistry) -> None:
        with TestClient(_create_test_app(service, registry)):
            service.close.assert_not_awaited()
        service.close.assert_awaited_once()

    def test_startup_fails_without_providers(self, service: MagicMock) -> None:
        config = OCRConfig(providers={"native": ProviderConfig(enabled=False)})
        registry = ProviderRegistry(config, make_settings())

        with pytest.raises(ConfigurationError):
            with TestClient(_create_test_app(service, registry)):
                pass
