"""Forwarded-mail handling: subject cleaning and original-body extraction.

Users often forward merchant mail into the aggregation mailbox.  The
forwarding client wraps the merchant's message in a preamble and a block of
header lines; both are stripped before the body reaches the completion
service.
"""
from __future__ import annotations

import re

DEFAULT_MAX_BODY_LENGTH = 20_000

# Gmail, Outlook and Apple Mail forwarding separators
FORWARD_MARKERS = [
    re.compile(r'-{5,}\s*Forwarded message\s*-{5,}', re.IGNORECASE),
    re.compile(r'-{5,}\s*Original Message\s*-{5,}', re.IGNORECASE),
    re.compile(r'Begin forwarded message\s*:', re.IGNORECASE),
]

_FORWARD_SUBJECT = re.compile(r'^\s*(?:fwd?|fw)\s*:\s*', re.IGNORECASE)

_HEADER_LINE = re.compile(r'^\s*(From|Date|Sent|Subject|To|Cc)\s*:', re.IGNORECASE)

_ORIGINAL_SENDER = re.compile(r'^\s*From\s*:.*?<?([\w.+-]+@[\w-]+(?:\.[\w-]+)+)>?', re.IGNORECASE | re.MULTILINE)


def is_forwarded_subject(subject: str | None) -> bool:
    return bool(subject and _FORWARD_SUBJECT.match(subject))


def clean_subject(subject: str | None) -> str:
    """Strip any number of leading ``Fwd:`` / ``Fw:`` prefixes."""
    cleaned = subject or ""
    while _FORWARD_SUBJECT.match(cleaned):
        cleaned = _FORWARD_SUBJECT.sub("", cleaned, count=1)
    return cleaned.strip()


def _find_marker(body: str) -> re.Match | None:
    matches = [m for m in (p.search(body) for p in FORWARD_MARKERS) if m]
    if not matches:
        return None
    return min(matches, key=lambda m: m.start())


def _strip_header_block(text: str) -> str:
    """Drop the From/Date/Subject/To block that follows a forward marker."""
    lines = text.splitlines()
    idx = 0
    # leading blank lines
    while idx < len(lines) and not lines[idx].strip():
        idx += 1
    start = idx
    while idx < len(lines) and _HEADER_LINE.match(lines[idx]):
        idx += 1
    if idx == start:
        return text
    return "\n".join(lines[idx:]).strip()


def extract_original_body(body: str | None, max_length: int = DEFAULT_MAX_BODY_LENGTH) -> str:
    """Return the merchant's message from a possibly forwarded *body*.

    Non-forwarded bodies pass through unchanged apart from truncation to
    *max_length* characters.
    """
    text = (body or "").strip()
    marker = _find_marker(text)
    if marker is not None:
        text = _strip_header_block(text[marker.end():])
    if len(text) > max_length:
        text = text[:max_length]
    return text


def extract_original_sender(body: str | None) -> str | None:
    """Address on the first ``From:`` line after a forward marker, if any."""
    text = body or ""
    marker = _find_marker(text)
    if marker is None:
        return None
    found = _ORIGINAL_SENDER.search(text, marker.end())
    return found.group(1).lower() if found else None
