"""Core services: rate limiting, provider registry, quality gate and orchestration."""

from booking_ocr.services.batch_coordinator import BatchCoordinator
from booking_ocr.services.handwriting_detector import HandwritingDetector
from booking_ocr.services.ocr_service import OCRMultiProviderService
from booking_ocr.services.provider_registry import ProviderRegistry
from booking_ocr.services.quality_validator import QualityPolicy, QualityValidator
from booking_ocr.services.rate_limiter import RateLimiterService, is_rate_limit_error

__all__ = [
    "BatchCoordinator",
    "HandwritingDetector",
    "OCRMultiProviderService",
    "ProviderRegistry",
    "QualityPolicy",
    "QualityValidator",
    "RateLimiterService",
    "is_rate_limit_error",
]
