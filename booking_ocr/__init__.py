"""booking-ocr: multi-provider OCR orchestration for booking documents."""

__version__ = "0.1.0"
