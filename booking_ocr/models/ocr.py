"""Document and OCR result models.

Pydantic v2 models for the documents entering the OCR layer and the results
leaving it.  All models are frozen: enrichment (structured data, metadata)
produces a new instance via ``model_copy(update=...)``.

    1. An upload or batch item becomes        -> OCRDocument
    2. A provider adapter reads the document  -> OCRResult
    3. The quality validator scores the text  -> ValidationResult
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import mimetypes
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from booking_ocr.utils.errors import UnsupportedDocumentError

QualityLevel = Literal["high", "medium", "low"]

_IMAGE_PREFIX = "image/"
_PDF_MIME = "application/pdf"


# ---------------------------------------------------------------------------
# OCRDocument
# ---------------------------------------------------------------------------
class OCRDocument(BaseModel):
    """A document submitted for OCR.

    The raw bytes live in a private attribute so that logging or returning
    the model never serialises the payload.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"doc_{uuid4().hex[:12]}")
    filename: str = "document"
    mime_type: str
    file_size: int = Field(ge=0)
    # SHA-256 of the raw bytes; doubles as part of the cache key.
    content_hash: str
    document_type: str = "booking_pdf"

    _data: bytes = PrivateAttr(default=b"")

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == _PDF_MIME

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith(_IMAGE_PREFIX)

    @property
    def size_mb(self) -> float:
        return self.file_size / (1024 * 1024)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        *,
        mime_type: str | None = None,
        filename: str = "document",
        document_type: str = "booking_pdf",
        document_id: str | None = None,
    ) -> OCRDocument:
        """Build a document from raw bytes, guessing the MIME type if needed.

        Raises
        ------
        UnsupportedDocumentError
            If the MIME type is neither a PDF nor an image.
        """
        resolved = mime_type or _sniff_mime_type(data, filename)
        if resolved != _PDF_MIME and not resolved.startswith(_IMAGE_PREFIX):
            raise UnsupportedDocumentError(f"Unsupported document type: {resolved}")

        fields: dict[str, Any] = {
            "filename": filename,
            "mime_type": resolved,
            "file_size": len(data),
            "content_hash": hashlib.sha256(data).hexdigest(),
            "document_type": document_type,
        }
        if document_id:
            fields["id"] = document_id
        document = cls(**fields)
        document._data = data
        return document

    @classmethod
    def from_base64(
        cls,
        encoded: str,
        *,
        mime_type: str | None = None,
        filename: str = "document",
        document_type: str = "booking_pdf",
        document_id: str | None = None,
    ) -> OCRDocument:
        """Decode a base64 payload (a ``data:`` URL prefix is tolerated)."""
        if encoded.startswith("data:") and "," in encoded:
            header, encoded = encoded.split(",", 1)
            if mime_type is None:
                mime_type = header[5:].split(";", 1)[0] or None
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UnsupportedDocumentError("Document payload is not valid base64") from exc
        return cls.from_bytes(
            data,
            mime_type=mime_type,
            filename=filename,
            document_type=document_type,
            document_id=document_id,
        )


def _sniff_mime_type(data: bytes, filename: str) -> str:
    if data.startswith(b"%PDF"):
        return _PDF_MIME
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


# ---------------------------------------------------------------------------
# Quality validation
# ---------------------------------------------------------------------------
class QualityMetrics(BaseModel):
    """Raw measurements the quality score is derived from."""

    model_config = ConfigDict(frozen=True)

    text_length: int = 0
    word_count: int = 0
    artifact_count: int = 0
    artifact_ratio: float = 0.0
    indicator_count: int = 0
    indicators_found: list[str] = Field(default_factory=list)
    date_count: int = 0
    currency_count: int = 0


class ValidationResult(BaseModel):
    """Quality verdict for one OCR result."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    quality_score: int = Field(ge=0, le=100)
    # quality_score / 100
    confidence: float = Field(ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    corrections: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    metrics: QualityMetrics = Field(default_factory=QualityMetrics)


# ---------------------------------------------------------------------------
# OCRResult
# ---------------------------------------------------------------------------
class OCRMetadata(BaseModel):
    """Provider-reported facts about a processed document."""

    model_config = ConfigDict(frozen=True)

    page_count: int | None = None
    language: str | None = None
    quality: QualityLevel = "medium"


class OCRResult(BaseModel):
    """The outcome of OCR on one document by one provider.

    ``confidence`` is the provider's self-reported confidence in 0..1.
    ``processing_time_ms`` covers the provider call only; the orchestrator
    records end-to-end timing separately.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = True
    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    provider: str
    structured_data: dict[str, Any] | None = None
    error: str | None = None
    metadata: OCRMetadata | None = None
    # Set by the orchestrator once the result has been through the quality gate.
    validation: ValidationResult | None = None

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        provider: str = "none",
        processing_time_ms: float = 0.0,
    ) -> OCRResult:
        """Build a failed result carrying *error*."""
        return cls(
            success=False,
            text="",
            confidence=0.0,
            processing_time_ms=processing_time_ms,
            provider=provider,
            error=error,
        )


# ---------------------------------------------------------------------------
# Request options
# ---------------------------------------------------------------------------
class ProcessOptions(BaseModel):
    """Per-call knobs for ``OCRMultiProviderService.process_document``."""

    model_config = ConfigDict(frozen=True)

    preferred_provider: str | None = None
    require_high_quality: bool = True
    # Whole-document deadline; ``None`` uses the document type's timeout.
    timeout_seconds: float | None = Field(default=None, gt=0)
    document_type: str | None = None
    # Failover strategy name (fast / balanced / quality); ``None`` = default rules.
    strategy: str | None = None
