"""Concrete adapters for the interfaces in ``booking_ocr.interfaces``."""
