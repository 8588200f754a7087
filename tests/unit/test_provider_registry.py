"""Unit tests for ProviderRegistry availability, ordering and diagnostics."""

from __future__ import annotations

import pytest

from booking_ocr.config.ocr_config import OCRConfig, ProviderConfig
from booking_ocr.services.provider_registry import ProviderRegistry
from booking_ocr.utils.errors import ConfigurationError
from tests.conftest import make_settings


def _no_keys():
    return make_settings(google_gemini_api_key="", google_api_key="", openrouter_api_key="")


class TestAvailability:
    def test_all_providers_available_with_keys(self, registry: ProviderRegistry) -> None:
        names = [d.name for d in registry.list_available()]
        assert names == ["gemini", "openrouter", "native"]

    def test_priority_order_is_ascending(self, registry: ProviderRegistry) -> None:
        priorities = [d.priority for d in registry.list_all()]
        assert priorities == sorted(priorities)

    def test_missing_credentials_leave_only_native(self, ocr_config: OCRConfig) -> None:
        registry = ProviderRegistry(ocr_config, _no_keys())
        assert [d.name for d in registry.list_available()] == ["native"]
        assert registry.resolve("gemini").available is False

    def test_generic_google_key_enables_gemini(self, ocr_config: OCRConfig) -> None:
        settings = make_settings(google_gemini_api_key="", google_api_key="g-key", openrouter_api_key="")
        registry = ProviderRegistry(ocr_config, settings)
        assert registry.resolve("gemini").available is True

    def test_disabled_provider_is_unavailable(self, settings) -> None:
        config = OCRConfig(providers={"native": ProviderConfig(enabled=False, priority=1)})
        registry = ProviderRegistry(config, settings)
        assert registry.list_available() == []

    def test_reload_picks_up_new_credentials(self, ocr_config: OCRConfig) -> None:
        registry = ProviderRegistry(ocr_config, _no_keys())
        registry.reload(ocr_config, make_settings())
        assert len(registry.list_available()) == 3

    def test_descriptor_carries_configured_limits(self, registry: ProviderRegistry) -> None:
        openrouter = registry.resolve("openrouter")
        assert openrouter.max_retries == 2
        assert openrouter.initial_delay_ms == 1500
        assert openrouter.max_pages == 15
        assert openrouter.structured_extraction is False
        native = registry.resolve("native")
        assert native.accepts_mime_type("application/pdf") is True
        assert native.accepts_mime_type("image/png") is False


class TestSelection:
    def test_optimal_provider_follows_document_type(self, registry: ProviderRegistry) -> None:
        assert registry.optimal_provider("simple_pdf").name == "native"
        assert registry.optimal_provider("booking_pdf").name == "gemini"

    def test_optimal_provider_falls_back_to_first_available(self, ocr_config: OCRConfig) -> None:
        settings = make_settings(google_gemini_api_key="", google_api_key="")
        registry = ProviderRegistry(ocr_config, settings)
        assert registry.optimal_provider("booking_pdf").name == "openrouter"

    def test_optimal_provider_none_when_nothing_available(self, settings) -> None:
        config = OCRConfig(providers={"native": ProviderConfig(enabled=False)})
        assert ProviderRegistry(config, settings).optimal_provider() is None

    def test_unknown_document_type_uses_default(self, registry: ProviderRegistry) -> None:
        profile = registry.document_type("unknown")
        assert profile.preferred_provider == "gemini"
        assert "guest_name" in profile.required_fields

    def test_strategy_lookup(self, registry: ProviderRegistry) -> None:
        assert registry.failover_strategy("fast").skip_quality_validation is True
        assert registry.failover_strategy("quality").min_quality_score == 80
        assert registry.failover_strategy(None).min_quality_score == 60


class TestValidate:
    def test_full_setup_has_no_issues(self, registry: ProviderRegistry) -> None:
        report = registry.validate()

        assert report.valid is True
        assert report.issues == []
        assert report.recommendations == []
        assert report.available_providers == ["gemini", "openrouter", "native"]

    def test_native_only_setup_is_flagged(self, ocr_config: OCRConfig) -> None:
        report = ProviderRegistry(ocr_config, _no_keys()).validate()

        assert report.valid is True
        assert "Only native PDF parser available - limited OCR capabilities" in report.issues
        assert any("GOOGLE_GEMINI_API_KEY or GOOGLE_API_KEY" in i for i in report.issues)
        assert any("OPENROUTER_API_KEY" in i for i in report.issues)
        assert "Configure at least 2 OCR providers for redundancy" in report.recommendations
        assert any("structured extraction" in r for r in report.recommendations)

    def test_nothing_available_is_invalid(self, settings) -> None:
        config = OCRConfig(providers={"native": ProviderConfig(enabled=False)})
        registry = ProviderRegistry(config, settings)
        report = registry.validate()

        assert report.valid is False
        assert "No OCR providers are available" in report.issues
        assert any("unknown provider 'gemini'" in i for i in report.issues)
        with pytest.raises(ConfigurationError):
            registry.require_available()

    def test_require_available_passes(self, registry: ProviderRegistry) -> None:
        registry.require_available()
