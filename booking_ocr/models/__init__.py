"""Pydantic v2 data models for booking-ocr.

All models are frozen.  ``ocr`` holds documents, results and validation
verdicts; ``provider`` holds provider descriptors and reporting shapes.
"""

from booking_ocr.models.ocr import (
    OCRDocument,
    OCRMetadata,
    OCRResult,
    ProcessOptions,
    QualityMetrics,
    ValidationResult,
)
from booking_ocr.models.provider import (
    BatchItemResult,
    BatchResult,
    BatchSummary,
    ConfigurationReport,
    ProviderDescriptor,
    ProviderHealth,
    RateLimitStatus,
)

__all__ = [
    "BatchItemResult",
    "BatchResult",
    "BatchSummary",
    "ConfigurationReport",
    "OCRDocument",
    "OCRMetadata",
    "OCRResult",
    "ProcessOptions",
    "ProviderDescriptor",
    "ProviderHealth",
    "QualityMetrics",
    "RateLimitStatus",
    "ValidationResult",
]
