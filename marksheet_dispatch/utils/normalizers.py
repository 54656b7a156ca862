"""Normalize result tokens, marks, and registration numbers."""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

ABSENT_TOKENS: frozenset[str] = frozenset({"AB", "ABS", "ABSENT"})

RESULT_TOKENS: dict[str, str] = {
    "AB": "Absent",
    "ABS": "Absent",
    "ABSENT": "Absent",
    "P": "Pass",
    "PASS": "Pass",
    "F": "Fail",
    "FAIL": "Fail",
}

_DIGITS = re.compile(r"(\d+)")


def normalize_token(value: Any) -> str:
    """Upper-case, trimmed string form of a str or number. Anything else -> ''."""
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(value).strip().upper()
    if isinstance(value, str):
        return value.strip().upper()
    return ""


def normalize_result_token(value: Any) -> Optional[str]:
    """Map P/PASS, F/FAIL, AB/ABS/ABSENT (any case) to Pass/Fail/Absent."""
    token = normalize_token(value)
    if not token:
        return None
    return RESULT_TOKENS.get(token)


def is_absent_value(value: Any) -> bool:
    if value is None:
        return False
    return normalize_token(value) in ABSENT_TOKENS


def parse_marks(value: Any) -> Optional[float]:
    """Return marks as a finite float, or None when there is no usable number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        marks = float(value)
    except (TypeError, ValueError):
        return None
    return marks if math.isfinite(marks) else None


def registration_sort_key(reg_number: Any) -> tuple:
    """Case-insensitive, numeric-aware sort key ('21CS2' < '21CS10')."""
    text = str(reg_number or "").strip().lower()
    parts = _DIGITS.split(text)
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


def parse_timestamp(value: Any) -> datetime:
    """Parse a datetime or ISO-8601 string. Naive values are taken as UTC.

    Raises:
        ValueError: If the value is missing or not a parseable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a timestamp: {value!r}")
    return assume_utc(parsed)


def assume_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
