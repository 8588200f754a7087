"""Unit tests for YAML configuration loading and settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from booking_ocr.config.loader import load_config, load_ocr_config
from booking_ocr.utils.errors import ConfigurationError
from tests.conftest import make_settings

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "config.yaml"


class TestLoadConfig:
    def test_repository_config_matches_defaults(self) -> None:
        config = load_ocr_config(str(REPO_CONFIG), make_settings())

        assert [name for name, _ in sorted(config.providers.items(), key=lambda kv: kv[1].priority)] == [
            "gemini",
            "openrouter",
            "native",
        ]
        assert config.providers["gemini"].capabilities.handwriting is True
        assert config.providers["native"].capabilities.images is False
        assert config.default_strategy == "balanced"
        assert config.document_types["simple_pdf"].preferred_provider == "native"

    def test_partial_yaml_keeps_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("ocr:\n  default_strategy: fast\n  quality:\n    min_quality_score: 70\n")

        config = load_ocr_config(str(path), make_settings())

        assert config.default_strategy == "fast"
        assert config.quality.min_quality_score == 70
        assert set(config.providers) == {"gemini", "openrouter", "native"}

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_ocr_config(str(tmp_path / "absent.yaml"), make_settings())
        assert config.default_document_type == "booking_pdf"

    def test_environment_overrides_app_section(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("app:\n  name: booking-ocr\n  port: 1234\n")

        config = load_config(str(path), make_settings(app_port=9000, log_level="DEBUG"))

        assert config["app"]["name"] == "booking-ocr"
        assert config["app"]["port"] == 9000
        assert config["logging"]["level"] == "DEBUG"

    def test_invalid_yaml_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("ocr: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_config(str(path), make_settings())

    def test_schema_violation_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("ocr:\n  quality:\n    min_quality_score: 500\n")

        with pytest.raises(ConfigurationError):
            load_ocr_config(str(path), make_settings())


class TestSettings:
    def test_gemini_key_falls_back_to_google_key(self) -> None:
        settings = make_settings(google_gemini_api_key="", google_api_key="fallback")
        assert settings.gemini_api_key == "fallback"

    def test_cors_origin_list(self) -> None:
        settings = make_settings(cors_origins="http://a.test, http://b.test,")
        assert settings.cors_origin_list == ["http://a.test", "http://b.test"]

    def test_has_credential(self) -> None:
        settings = make_settings(openrouter_api_key="  ")
        assert settings.has_credential("openrouter_api_key") is False
        assert settings.has_credential("google_gemini_api_key") is True
        assert settings.has_credential("no_such_field") is False
