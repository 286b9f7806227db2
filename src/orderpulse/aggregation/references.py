"""Order-reference normalization."""
from __future__ import annotations

from uuid import UUID

SYNTHETIC_PREFIX = "UNKNOWN-"


def normalize_order_number(reference: str | None) -> str:
    """Strip surrounding whitespace and leading ``#`` marks.

    >>> normalize_order_number("  # 112-9387462-1029384 ")
    '112-9387462-1029384'
    """
    text = (reference or "").strip()
    while text.startswith("#"):
        text = text[1:].lstrip()
    return text


def synthetic_order_number(message_id: UUID) -> str:
    """Placeholder number for an order whose message carried no reference."""
    return f"{SYNTHETIC_PREFIX}{message_id.hex}"


def is_synthetic(order_number: str | None) -> bool:
    return bool(order_number) and order_number.startswith(SYNTHETIC_PREFIX)
