"""Typed OCR configuration: providers, rate limiting, quality, document types.

``config/config.yaml`` is parsed into :class:`OCRConfig`.  Every section has
built-in defaults so a missing or partial YAML file still yields the full
three-provider setup (gemini -> openrouter -> native).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------
class ProviderCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    pdf: bool = True
    images: bool = True
    handwriting: bool = False
    structured_extraction: bool = False
    multi_language: bool = False
    quality_score: int = Field(default=70, ge=0, le=100)


class ProviderLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_file_size_mb: float = 10.0
    max_pages: int = 20
    timeout_ms: int = 30000


class ProviderCosts(BaseModel):
    model_config = ConfigDict(frozen=True)

    per_page: float = 0.0
    per_mb: float = 0.0


class ProviderRetry(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=1, ge=1)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)
    initial_delay_ms: int = Field(default=1000, ge=0)


class ProviderRateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(default=10, ge=1)
    burst_limit: int = Field(default=5, ge=1)
    cooldown_period_ms: int = Field(default=60000, ge=0)


class ProviderConfig(BaseModel):
    """One entry under ``providers:`` in the YAML file."""

    model_config = ConfigDict(frozen=True)

    display_name: str = ""
    description: str = ""
    enabled: bool = True
    priority: int = Field(default=99, ge=0)
    # Settings field names; any non-empty one makes the provider available.
    credentials: list[str] = Field(default_factory=list)
    capabilities: ProviderCapabilities = Field(default_factory=ProviderCapabilities)
    limits: ProviderLimits = Field(default_factory=ProviderLimits)
    costs: ProviderCosts = Field(default_factory=ProviderCosts)
    retry: ProviderRetry = Field(default_factory=ProviderRetry)
    rate_limit: ProviderRateLimit = Field(default_factory=ProviderRateLimit)


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "gemini": ProviderConfig(
            display_name="Google Gemini",
            description="Google's multimodal model with strong OCR and structured extraction",
            priority=1,
            credentials=["google_gemini_api_key", "google_api_key"],
            capabilities=ProviderCapabilities(
                handwriting=True, structured_extraction=True, multi_language=True, quality_score=95,
            ),
            limits=ProviderLimits(max_file_size_mb=10, max_pages=20, timeout_ms=30000),
            costs=ProviderCosts(per_page=0.001, per_mb=0.0005),
            retry=ProviderRetry(max_retries=3, backoff_multiplier=1.5, initial_delay_ms=1000),
            rate_limit=ProviderRateLimit(requests_per_minute=15, burst_limit=5, cooldown_period_ms=60000),
        ),
        "openrouter": ProviderConfig(
            display_name="OpenRouter Mistral",
            description="Mistral vision model via OpenRouter",
            priority=2,
            credentials=["openrouter_api_key"],
            capabilities=ProviderCapabilities(
                handwriting=False, structured_extraction=False, multi_language=True, quality_score=85,
            ),
            limits=ProviderLimits(max_file_size_mb=8, max_pages=15, timeout_ms=25000),
            costs=ProviderCosts(per_page=0.005, per_mb=0.002),
            retry=ProviderRetry(max_retries=2, backoff_multiplier=2.0, initial_delay_ms=1500),
            rate_limit=ProviderRateLimit(requests_per_minute=10, burst_limit=3, cooldown_period_ms=90000),
        ),
        "native": ProviderConfig(
            display_name="Native PDF Parser",
            description="Local PDF text-layer extraction without AI",
            priority=3,
            credentials=[],
            capabilities=ProviderCapabilities(
                images=False, multi_language=True, quality_score=70,
            ),
            limits=ProviderLimits(max_file_size_mb=50, max_pages=100, timeout_ms=10000),
            costs=ProviderCosts(),
            retry=ProviderRetry(max_retries=1, backoff_multiplier=1.0, initial_delay_ms=500),
            rate_limit=ProviderRateLimit(requests_per_minute=100, burst_limit=20, cooldown_period_ms=0),
        ),
    }


# ---------------------------------------------------------------------------
# Global rate limiting
# ---------------------------------------------------------------------------
class RateLimitingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_concurrent_requests: int = Field(default=5, ge=1)
    queue_max_size: int = Field(default=50, ge=1)
    request_timeout_ms: int = 120000
    cache_enabled: bool = True
    queue_enabled: bool = True
    cache_max_size: int = Field(default=100, ge=1)
    cache_ttl_seconds: int = 300
    rate_limit_retries: int = Field(default=3, ge=0)


# ---------------------------------------------------------------------------
# Quality validation
# ---------------------------------------------------------------------------
_DEFAULT_INDICATORS: dict[str, str] = {
    "check_in": r"(?i)check.?in",
    "check_out": r"(?i)check.?out",
    "guest": r"(?i)guest",
    "booking": r"(?i)booking",
    "reservation": r"(?i)reservation",
    "property": r"(?i)property",
    "date": r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}|\d{4}-\d{1,2}-\d{1,2}",
    "currency": r"€\s*\d+|USD\s*\d+|\$\s*\d+",
    "platform": r"(?i)airbnb|booking\.com|expedia",
}


class ConfidenceBands(BaseModel):
    model_config = ConfigDict(frozen=True)

    minimum: float = 0.3
    warning: float = 0.6
    good: float = 0.8


class QualityPenalties(BaseModel):
    model_config = ConfigDict(frozen=True)

    short_text: int = 30
    artifacts: int = 20
    indicators: int = 15
    low_confidence: int = 25


class QualityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_text_length: int = 10
    warning_text_length: int = 50
    max_artifact_ratio: float = 0.05
    artifact_pattern: str = r"[^\w\s.,\-()\[\]]"
    required_indicators: int = 2
    indicators: dict[str, str] = Field(default_factory=lambda: dict(_DEFAULT_INDICATORS))
    confidence: ConfidenceBands = Field(default_factory=ConfidenceBands)
    penalties: QualityPenalties = Field(default_factory=QualityPenalties)
    min_quality_score: int = Field(default=60, ge=0, le=100)
    # Graceful degradation accepts any text longer than this when
    # high quality is not required.
    degraded_min_length: int = 10
    handwriting_threshold: float = Field(default=0.4, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Document types and failover strategies
# ---------------------------------------------------------------------------
class DocumentTypeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = ""
    preferred_provider: str | None = None
    quality_threshold: int = Field(default=60, ge=0, le=100)
    required_fields: list[str] = Field(default_factory=list)
    preprocess: bool = False
    timeout_ms: int = 45000


def _default_document_types() -> dict[str, DocumentTypeConfig]:
    return {
        "booking_pdf": DocumentTypeConfig(
            description="Booking confirmation PDF",
            preferred_provider="gemini",
            quality_threshold=85,
            required_fields=["guest_name", "check_in_date", "check_out_date", "property_name"],
            timeout_ms=45000,
        ),
        "handwritten": DocumentTypeConfig(
            description="Handwritten booking note or form",
            preferred_provider="gemini",
            quality_threshold=70,
            preprocess=True,
            timeout_ms=60000,
        ),
        "scanned_document": DocumentTypeConfig(
            description="Scanned or photographed document",
            preferred_provider="gemini",
            quality_threshold=80,
            preprocess=True,
            timeout_ms=50000,
        ),
        "simple_pdf": DocumentTypeConfig(
            description="Digital PDF with an embedded text layer",
            preferred_provider="native",
            quality_threshold=60,
            timeout_ms=15000,
        ),
    }


class FailoverStrategyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = ""
    max_wait_ms: int = 30000
    skip_quality_validation: bool = False
    accept_partial_results: bool = True
    min_quality_score: int | None = None


def _default_strategies() -> dict[str, FailoverStrategyConfig]:
    return {
        "fast": FailoverStrategyConfig(
            description="Quick failover for time-sensitive operations",
            max_wait_ms=10000,
            skip_quality_validation=True,
            accept_partial_results=True,
        ),
        "quality": FailoverStrategyConfig(
            description="Prioritise result quality over speed",
            max_wait_ms=60000,
            skip_quality_validation=False,
            accept_partial_results=False,
            min_quality_score=80,
        ),
        "balanced": FailoverStrategyConfig(
            description="Balance speed and quality",
            max_wait_ms=30000,
            skip_quality_validation=False,
            accept_partial_results=True,
            min_quality_score=60,
        ),
    }


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------
class OCRConfig(BaseModel):
    """Root of the ``ocr:`` section of ``config/config.yaml``."""

    model_config = ConfigDict(frozen=True)

    providers: dict[str, ProviderConfig] = Field(default_factory=_default_providers)
    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    document_types: dict[str, DocumentTypeConfig] = Field(default_factory=_default_document_types)
    failover_strategies: dict[str, FailoverStrategyConfig] = Field(default_factory=_default_strategies)
    default_document_type: str = "booking_pdf"
    default_strategy: str = "balanced"

    @classmethod
    def from_mapping(cls, raw: dict[str, Any] | None) -> OCRConfig:
        """Build from the parsed ``ocr:`` mapping; ``None`` gives all defaults."""
        return cls.model_validate(raw or {})
