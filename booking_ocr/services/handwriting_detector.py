"""Cheap heuristic guess at whether a document is handwritten.

The score only steers provider ordering (a handwriting-capable provider is
tried first above the threshold); it never blocks processing.  It looks at
the first 10 000 bytes decoded as UTF-8 and combines five signals:

    density      0.3   less decodable text -> more likely handwritten
    noise        0.2   share of non-alphanumeric characters, x5
    formatting   0.2   0.5 unless paragraphs, numbered lists or tables appear
    typography   0.1   0.3 unless digital marks such as (c) or (R) appear
    variance     0.2   variance of word lengths / 10
"""

from __future__ import annotations

import re

import structlog

from booking_ocr.utils.logging import get_logger

_SAMPLE_BYTES = 10_000
_DENSITY_REFERENCE_CHARS = 5000

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9\s]")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_NUMBERED_LIST_RE = re.compile(r"\n\s*\d+\.\s")
_TABLE_RE = re.compile(r"\n\s*\||\t")
_DIGITAL_MARKS_RE = re.compile(r"[©®™§¶†‡]")
_WORD_RE = re.compile(r"\b\w+\b", re.ASCII)

DEFAULT_HANDWRITING_THRESHOLD = 0.4


class HandwritingDetector:
    """Scores raw document bytes in [0, 1]; higher means "probably handwritten"."""

    def __init__(self, threshold: float = DEFAULT_HANDWRITING_THRESHOLD) -> None:
        self._threshold = threshold
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def threshold(self) -> float:
        return self._threshold

    def score(self, document_bytes: bytes) -> float:
        """Return the handwriting likelihood of *document_bytes*.

        Any failure yields ``0.0`` so the caller falls back to normal
        provider ordering.
        """
        try:
            text = document_bytes[:_SAMPLE_BYTES].decode("utf-8", errors="replace")
            value = self._score_text(text)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("handwriting_detection_failed", error=str(exc))
            return 0.0
        self._logger.debug("handwriting_scored", score=round(value, 3))
        return value

    def is_handwritten(self, document_bytes: bytes) -> bool:
        return self.score(document_bytes) > self._threshold

    def _score_text(self, text: str) -> float:
        length = len(text)
        density = max(0.0, min(1.0, 1 - length / _DENSITY_REFERENCE_CHARS))

        noise_ratio = len(_NON_ALNUM_RE.findall(text)) / max(1, length)
        noise = min(1.0, noise_ratio * 5)

        formatted = bool(
            _PARAGRAPH_RE.search(text) or _NUMBERED_LIST_RE.search(text) or _TABLE_RE.search(text)
        )
        formatting = 0.0 if formatted else 0.5

        typography = 0.0 if _DIGITAL_MARKS_RE.search(text) else 0.3

        lengths = [len(word) for word in _WORD_RE.findall(text)]
        if lengths:
            mean = sum(lengths) / len(lengths)
            variance = sum((n - mean) ** 2 for n in lengths) / len(lengths)
        else:
            variance = 0.0
        spread = min(1.0, variance / 10)

        return (
            density * 0.3
            + noise * 0.2
            + formatting * 0.2
            + typography * 0.1
            + spread * 0.2
        )
