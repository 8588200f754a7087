"""YAML configuration loader with environment variable overrides.

Layers, later overriding earlier:

  1. ``config/config.yaml`` -- provider table, quality policy, strategies
  2. ``.env`` file          -- local developer overrides (not committed)
  3. Environment variables  -- set at deploy time

``load_config`` reads the YAML first and deep-merges the environment-derived
values on top.  ``load_ocr_config`` turns the ``ocr:`` section into the typed
:class:`~booking_ocr.config.ocr_config.OCRConfig`.
"""

from pathlib import Path

import yaml

from booking_ocr.config.ocr_config import OCRConfig
from booking_ocr.config.settings import Settings
from booking_ocr.utils.errors import ConfigurationError


def load_config(path: str | None = None, settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  Defaults to
              ``settings.ocr_config_path``.
        settings: Settings instance; a fresh one is read from the
                  environment when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.ocr_config_path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
    else:
        yaml_config = {}

    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
            "max_upload_mb": settings.max_upload_mb,
            "max_batch_documents": settings.max_batch_documents,
            "preprocess_images": settings.preprocess_images,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def load_ocr_config(path: str | None = None, settings: Settings | None = None) -> OCRConfig:
    """Return the typed ``ocr:`` section of the configuration.

    Raises:
        ConfigurationError: If the section does not match the schema.
    """
    raw = load_config(path, settings).get("ocr")
    try:
        return OCRConfig.from_mapping(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid OCR configuration: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
