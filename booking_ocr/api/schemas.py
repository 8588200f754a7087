"""Pydantic request/response schemas for the OCR API.

Field names are snake_case in Python and camelCase on the wire
(``alias_generator=to_camel``); requests accept either spelling.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from booking_ocr.models.ocr import QualityMetrics, ValidationResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ProcessRequest(_CamelModel):
    """JSON body for ``POST /process`` when no multipart file is sent."""

    file_base64: str = Field(..., min_length=1)
    mime_type: str | None = None
    file_name: str = "document"
    preferred_provider: str | None = None
    require_high_quality: bool = True
    # Milliseconds; omitted means the document type's timeout.
    timeout: int | None = Field(default=None, gt=0)
    document_type: str | None = None
    strategy: str | None = None


class BatchDocumentInput(_CamelModel):
    file_base64: str = Field(..., min_length=1)
    mime_type: str | None = None
    file_name: str | None = None
    id: str | None = None


class BatchRequest(_CamelModel):
    """JSON body for ``POST /batch``."""

    documents: list[BatchDocumentInput] = Field(default_factory=list)
    concurrency: int = Field(default=3, ge=1, le=10)
    preferred_provider: str | None = None
    # Batches accept degraded results unless the caller asks otherwise.
    require_high_quality: bool = False
    document_type: str | None = None
    strategy: str | None = None


class ValidateRequest(_CamelModel):
    """Text to score without invoking any provider."""

    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    provider: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ValidationResponse(_CamelModel):
    is_valid: bool
    quality_score: int
    confidence: float
    issues: list[str] = Field(default_factory=list)
    corrections: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    metrics: QualityMetrics

    @classmethod
    def from_result(cls, verdict: ValidationResult) -> ValidationResponse:
        return cls(**verdict.model_dump(exclude={"metrics"}), metrics=verdict.metrics)


class DocumentMetadata(_CamelModel):
    file_name: str
    file_size: str
    mime_type: str
    document_type: str
    quality: str = "unknown"
    page_count: int = 1
    language: str = "auto"


class ProcessResponse(_CamelModel):
    """Result of one processed document."""

    success: bool = True
    request_id: str
    provider: str
    confidence: float
    # Milliseconds, end to end.
    processing_time: float
    # Milliseconds spent inside the accepted provider call.
    ocr_time: float
    text: str
    text_length: int
    structured_data: dict[str, Any] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)
    metadata: DocumentMetadata
    validation: ValidationResponse | None = None


class BatchItemResponse(_CamelModel):
    document_id: str
    file_name: str
    success: bool
    provider: str
    confidence: float
    processing_time: float
    text: str
    structured_data: dict[str, Any] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)
    error: str | None = None


class BatchSummaryResponse(_CamelModel):
    total: int
    successful: int
    failed: int
    processing_time: float
    average_time_per_document: float


class BatchResponse(_CamelModel):
    success: bool = True
    request_id: str
    summary: BatchSummaryResponse
    results: list[BatchItemResponse]


class ConfigurationResponse(_CamelModel):
    valid: bool
    issues: list[str] = Field(default_factory=list)
    available_providers: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ProvidersResponse(_CamelModel):
    """Live provider status plus configuration diagnostics."""

    success: bool = True
    providers: list[dict[str, Any]]
    available_providers: list[str]
    statistics: dict[str, Any]
    configuration: ConfigurationResponse
    recommendations: list[str] = Field(default_factory=list)


class StatusResponse(_CamelModel):
    success: bool = True
    status: str = "operational"
    timestamp: str
    statistics: dict[str, Any]
    configuration: ConfigurationResponse
    version: str


class ValidateResponse(_CamelModel):
    success: bool = True
    validation: ValidationResponse
    recommendations: list[str] = Field(default_factory=list)


class ErrorResponse(_CamelModel):
    """Standard error response body."""

    success: bool = False
    error: str
    detail: str | None = None
    provider: str | None = None
