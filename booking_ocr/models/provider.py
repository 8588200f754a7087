"""Provider, rate-limit and batch models.

``ProviderDescriptor`` is the registry's view of one OCR backend: its
priority, capabilities, limits and retry settings, merged from
``config/config.yaml`` and the environment.  The remaining models are the
reporting shapes returned by the limiter, the orchestrator and the batch
coordinator.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from booking_ocr.models.ocr import OCRResult


class ProviderDescriptor(BaseModel):
    """Static description of one OCR provider plus its derived availability."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str = ""
    description: str = ""
    # Lower is tried first.
    priority: int = Field(ge=0)
    available: bool = False
    max_retries: int = Field(default=1, ge=1)
    timeout_ms: int = Field(default=30000, gt=0)
    cost_per_page: float = 0.0
    cost_per_mb: float = 0.0

    supports_pdf: bool = True
    supports_image: bool = True
    structured_extraction: bool = False
    supports_handwriting: bool = False
    multi_language: bool = False
    quality_score: int = Field(default=70, ge=0, le=100)

    max_file_size_mb: float = 10.0
    max_pages: int = 20

    requests_per_minute: int = Field(default=10, ge=1)
    burst_limit: int = Field(default=5, ge=1)
    cooldown_period_ms: int = Field(default=60000, ge=0)

    initial_delay_ms: int = Field(default=1000, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)

    # Settings field names; the provider is available when any is non-empty.
    # An empty list means no credentials are needed.
    credentials: list[str] = Field(default_factory=list)

    def accepts_mime_type(self, mime_type: str) -> bool:
        if mime_type == "application/pdf":
            return self.supports_pdf
        if mime_type.startswith("image/"):
            return self.supports_image
        return False

    def estimate_cost(self, pages: int, size_mb: float) -> float:
        return round(self.cost_per_page * pages + self.cost_per_mb * size_mb, 6)


class ConfigurationReport(BaseModel):
    """Result of ``ProviderRegistry.validate``; non-fatal diagnostics."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    issues: list[str] = Field(default_factory=list)
    available_providers: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ProviderHealth(BaseModel):
    """Live status of one provider as reported by ``get_provider_status``."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    available: bool
    healthy: bool
    latency_ms: float | None = None
    error: str | None = None
    priority: int
    capabilities: dict[str, Any] = Field(default_factory=dict)
    limits: dict[str, Any] = Field(default_factory=dict)
    rate_limit: RateLimitStatus | None = None


class RateLimitStatus(BaseModel):
    """Snapshot of one limiter's window, queue and cache."""

    model_config = ConfigDict(frozen=True)

    name: str
    recent_requests: int
    max_requests_per_minute: int
    queue_size: int
    in_flight: int
    can_make_request: bool
    estimated_wait_seconds: float
    cache_size: int
    cache_enabled: bool
    queue_enabled: bool


class BatchSummary(BaseModel):
    """Aggregate numbers for one batch run."""

    model_config = ConfigDict(frozen=True)

    total: int
    successful: int
    failed: int
    processing_time_ms: float
    average_time_per_document_ms: float


class BatchItemResult(BaseModel):
    """One document's outcome inside a batch, in input position."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    filename: str
    result: OCRResult


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: BatchSummary
    results: list[BatchItemResult]


ProviderHealth.model_rebuild()
