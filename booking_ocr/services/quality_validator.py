"""Quality gate for OCR output.

Starts every result at 100 points and deducts for the usual signs of a bad
extraction on booking documents:

    short text (< 50 chars)              -30
    artifact characters above 5 %        -20
    fewer than 2 booking indicators      -15
    provider confidence below 0.8        -25

A result is accepted when ``quality_score >= 60`` and the text has at least
10 characters.  Every constant lives in :class:`QualityPolicy`, which is
built from the ``quality:`` section of ``config/config.yaml``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from booking_ocr.config.ocr_config import QualityConfig
from booking_ocr.models.ocr import OCRResult, QualityMetrics, ValidationResult
from booking_ocr.utils.logging import get_logger

_DATE_PATTERNS = [
    re.compile(r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"),
    re.compile(r"\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}"),
    re.compile(
        r"\d{1,2}\s+(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec|janeiro|fevereiro|"
        r"março|abril|maio|junho|julho|agosto|setembro|outubro|novembro|dezembro)",
        re.IGNORECASE,
    ),
]
_CURRENCY_PATTERNS = [
    re.compile(r"€\s*\d+([,.]\d{1,2})?"),
    re.compile(r"USD\s*\d+([,.]\d{1,2})?"),
    re.compile(r"(?<!R)\$\s*\d+([,.]\d{1,2})?"),
    re.compile(r"R\$\s*\d+([,.]\d{1,2})?"),
    re.compile(r"\d+([,.]\d{1,2})?\s*€"),
]


@dataclass(frozen=True)
class QualityPolicy:
    """Thresholds and penalties used by :class:`QualityValidator`."""

    min_text_length: int = 10
    warning_text_length: int = 50
    max_artifact_ratio: float = 0.05
    artifact_pattern: str = r"[^\w\s.,\-()\[\]]"
    required_indicators: int = 2
    indicators: dict[str, str] = field(default_factory=lambda: dict(QualityConfig().indicators))
    confidence_minimum: float = 0.3
    confidence_warning: float = 0.6
    confidence_good: float = 0.8
    short_text_penalty: int = 30
    artifact_penalty: int = 20
    indicator_penalty: int = 15
    low_confidence_penalty: int = 25
    min_quality_score: int = 60

    @classmethod
    def from_config(cls, config: QualityConfig) -> QualityPolicy:
        return cls(
            min_text_length=config.min_text_length,
            warning_text_length=config.warning_text_length,
            max_artifact_ratio=config.max_artifact_ratio,
            artifact_pattern=config.artifact_pattern,
            required_indicators=config.required_indicators,
            indicators=dict(config.indicators),
            confidence_minimum=config.confidence.minimum,
            confidence_warning=config.confidence.warning,
            confidence_good=config.confidence.good,
            short_text_penalty=config.penalties.short_text,
            artifact_penalty=config.penalties.artifacts,
            indicator_penalty=config.penalties.indicators,
            low_confidence_penalty=config.penalties.low_confidence,
            min_quality_score=config.min_quality_score,
        )


class QualityValidator:
    """Scores OCR text and decides whether the orchestrator may accept it."""

    def __init__(self, policy: QualityPolicy | None = None) -> None:
        self._policy = policy or QualityPolicy()
        self._artifact_re = re.compile(self._policy.artifact_pattern)
        self._indicator_res = {
            name: re.compile(pattern) for name, pattern in self._policy.indicators.items()
        }
        self._logger = get_logger(__name__)

    @property
    def policy(self) -> QualityPolicy:
        return self._policy

    def validate(self, result: OCRResult, min_quality_score: int | None = None) -> ValidationResult:
        """Validate a provider result; see :meth:`validate_text`."""
        verdict = self.validate_text(result.text, result.confidence, min_quality_score, result.provider)
        self._logger.debug(
            "quality_validated",
            provider=result.provider,
            quality_score=verdict.quality_score,
            is_valid=verdict.is_valid,
            issues=len(verdict.issues),
        )
        return verdict

    def validate_text(
        self,
        text: str,
        confidence: float,
        min_quality_score: int | None = None,
        provider: str | None = None,
    ) -> ValidationResult:
        """Score *text* as reported with *confidence* by a provider.

        Parameters
        ----------
        text:
            Extracted text.
        confidence:
            The provider's own confidence in 0..1.
        min_quality_score:
            Overrides the policy's acceptance threshold (e.g. the
            ``quality`` failover strategy asks for 80).
        provider:
            Provider name, only used in suggestions.
        """
        policy = self._policy
        threshold = policy.min_quality_score if min_quality_score is None else min_quality_score
        metrics = self.measure(text)

        score = 100
        issues: list[str] = []
        corrections: list[str] = []
        suggestions: list[str] = []

        if metrics.text_length < policy.warning_text_length:
            score -= policy.short_text_penalty
            issues.append(f"Text too short ({metrics.text_length} characters)")
            suggestions.append("Scan at a higher resolution or check that the document is complete")

        if metrics.artifact_ratio > policy.max_artifact_ratio:
            score -= policy.artifact_penalty
            issues.append(f"High artifact rate ({metrics.artifact_ratio * 100:.2f}%)")
            corrections.append("Clean OCR artifacts and normalise whitespace")
            suggestions.append("Try a different OCR provider or preprocess the image")

        if metrics.indicator_count < policy.required_indicators:
            score -= policy.indicator_penalty
            issues.append(
                f"Insufficient booking indicators ({metrics.indicator_count}/{policy.required_indicators})"
            )
            suggestions.append("Verify the document is a booking confirmation or reservation")

        if confidence < policy.confidence_good:
            score -= policy.low_confidence_penalty
            issues.append(f"Low OCR confidence ({confidence * 100:.1f}%)")
            if confidence < policy.confidence_warning:
                suggestions.append(
                    f"Consider a more accurate OCR provider than {provider}"
                    if provider
                    else "Consider a more accurate OCR provider"
                )

        if metrics.date_count == 0 and metrics.text_length > 0:
            suggestions.append("No dates detected; check that check-in/check-out dates are visible")

        score = max(0, min(100, score))
        is_valid = score >= threshold and metrics.text_length >= policy.min_text_length
        return ValidationResult(
            is_valid=is_valid,
            quality_score=score,
            confidence=score / 100,
            issues=issues,
            corrections=corrections,
            suggestions=suggestions,
            metrics=metrics,
        )

    def measure(self, text: str) -> QualityMetrics:
        """Compute the raw metrics for *text* without scoring it."""
        length = len(text)
        artifacts = len(self._artifact_re.findall(text))
        found = [name for name, pattern in self._indicator_res.items() if pattern.search(text)]
        return QualityMetrics(
            text_length=length,
            word_count=len(text.split()),
            artifact_count=artifacts,
            artifact_ratio=artifacts / length if length else 0.0,
            indicator_count=len(found),
            indicators_found=found,
            date_count=sum(len(p.findall(text)) for p in _DATE_PATTERNS),
            currency_count=sum(len(p.findall(text)) for p in _CURRENCY_PATTERNS),
        )

    def recommendations(self, verdict: ValidationResult) -> list[str]:
        """Human-readable next steps for the ``/validate`` endpoint."""
        if verdict.is_valid and verdict.quality_score >= 80:
            return ["Text quality is good; no action needed"]
        recs = list(dict.fromkeys(verdict.suggestions + verdict.corrections))
        if not verdict.is_valid:
            recs.append("Reprocess the document with a higher-quality provider")
        return recs
