"""Configuration module -- exports Settings, the typed OCR config and loaders."""

from booking_ocr.config.loader import load_config, load_ocr_config
from booking_ocr.config.ocr_config import OCRConfig
from booking_ocr.config.settings import Settings

__all__ = ["OCRConfig", "Settings", "load_config", "load_ocr_config"]
