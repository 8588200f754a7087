"""Pattern-based reservation field extraction.

Fallback for the structured-data pass when no provider with structured
extraction is available.  Recognises labelled check-in/check-out dates
(falling back to the first two dates in the text), guest and property
names, a total amount and the booking platform.
"""

from __future__ import annotations

import re
from typing import Any

_DATE = r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}|\d{4}-\d{1,2}-\d{1,2})"
_DATE_RE = re.compile(_DATE)
_CHECK_IN_RE = re.compile(r"(?:check.?in|arrival|entrada)\s*[:\-]?\s*" + _DATE, re.IGNORECASE)
_CHECK_OUT_RE = re.compile(r"(?:check.?out|departure|sa[ií]da)\s*[:\-]?\s*" + _DATE, re.IGNORECASE)
_LABEL_SEP = r"[ \t]*(?::[ \t]*|[ \t]+)"
_GUEST_RE = re.compile(
    r"(?:guest(?:[ \t]+name)?|h[óo]spede|name)" + _LABEL_SEP + r"([A-Za-zÀ-ÿ][A-Za-zÀ-ÿ' ]*)",
    re.IGNORECASE,
)
_PROPERTY_RE = re.compile(
    r"(?:property(?:[ \t]+name)?|propriedade|hotel|apartamento)" + _LABEL_SEP
    + r"([A-Za-z0-9À-ÿ][A-Za-z0-9À-ÿ' ]*)",
    re.IGNORECASE,
)
_AMOUNT_RE = re.compile(
    r"(?:total|amount|valor)[^\n\d€$]*((?:€|USD|R\$|\$)\s*\d+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?\s*€)",
    re.IGNORECASE,
)
_PLATFORMS = (
    (re.compile(r"airbnb", re.IGNORECASE), "Airbnb"),
    (re.compile(r"booking\.com", re.IGNORECASE), "Booking.com"),
    (re.compile(r"expedia", re.IGNORECASE), "Expedia"),
    (re.compile(r"hotels\.com", re.IGNORECASE), "Hotels.com"),
    (re.compile(r"vrbo", re.IGNORECASE), "VRBO"),
)


def extract_fields(text: str) -> dict[str, Any]:
    """Return whatever reservation fields can be recognised in *text*.

    Keys that could not be found are omitted; ``document_type`` is always
    ``"reservation"``.
    """
    data: dict[str, Any] = {"document_type": "reservation"}

    check_in = _CHECK_IN_RE.search(text)
    check_out = _CHECK_OUT_RE.search(text)
    if check_in:
        data["check_in_date"] = check_in.group(1)
    if check_out:
        data["check_out_date"] = check_out.group(1)
    if not (check_in and check_out):
        dates = _DATE_RE.findall(text)
        if "check_in_date" not in data and dates:
            data["check_in_date"] = dates[0]
        if "check_out_date" not in data and len(dates) > 1:
            data["check_out_date"] = dates[1]

    guest = _GUEST_RE.search(text)
    if guest and guest.group(1).strip():
        data["guest_name"] = guest.group(1).strip()

    prop = _PROPERTY_RE.search(text)
    if prop and prop.group(1).strip():
        data["property_name"] = prop.group(1).strip()

    amount = _AMOUNT_RE.search(text)
    if amount:
        data["total_amount"] = amount.group(1).strip()

    for pattern, platform in _PLATFORMS:
        if pattern.search(text):
            data["platform"] = platform
            break

    return data


def missing_fields(data: dict[str, Any] | None, required: list[str]) -> list[str]:
    """Return the *required* keys that are absent or blank in *data*."""
    data = data or {}
    return [name for name in required if not str(data.get(name) or "").strip()]
