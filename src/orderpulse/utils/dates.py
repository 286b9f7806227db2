"""Lenient date parsing for values returned by the extraction model.

The model is asked for ISO dates but merchants print dates in many shapes
and the model frequently copies them verbatim.  Everything is normalised to
naive UTC so values compare cleanly with database timestamps.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
import re

# Formats tried after ISO parsing fails, most common first
FALLBACK_FORMATS = [
    "%B %d, %Y",
    "%b %d, %Y",
    "%A, %B %d, %Y",
    "%a, %b %d, %Y",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d",
]

_ORDINAL_SUFFIX = re.compile(r'(\d{1,2})(st|nd|rd|th)\b', re.IGNORECASE)


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse *value* into a naive UTC datetime, or ``None`` if unparseable."""
    if value is None or not value.strip():
        return None
    text = _ORDINAL_SUFFIX.sub(r'\1', value.strip())

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None

    if parsed is None:
        for fmt in FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value: str | None) -> date | None:
    """Parse *value* into a calendar date, or ``None``."""
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None
