"""CLI tools for booking-ocr.

- ``python -m booking_ocr.cli process FILE`` -- OCR one document
- ``python -m booking_ocr.cli batch FILE...`` -- OCR several documents
- ``python -m booking_ocr.cli providers`` -- provider health and config report
"""
