"""Enumerations shared by the pipeline, storage and API layers.

All values are snake_case strings so they can be stored in plain string
columns and compared directly against values read back from the database.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TypeVar


class ClassificationType(StrEnum):
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_MODIFICATION = "order_modification"
    ORDER_CANCELLATION = "order_cancellation"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    SHIPMENT_CONFIRMATION = "shipment_confirmation"
    SHIPMENT_UPDATE = "shipment_update"
    DELIVERY_CONFIRMATION = "delivery_confirmation"
    DELIVERY_ISSUE = "delivery_issue"
    RETURN_INITIATION = "return_initiation"
    RETURN_LABEL = "return_label"
    RETURN_RECEIVED = "return_received"
    RETURN_REJECTION = "return_rejection"
    REFUND_CONFIRMATION = "refund_confirmation"
    PROMOTIONAL = "promotional"


class ProcessingStatus(StrEnum):
    PENDING = "pending"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    PARSING = "parsing"
    PARSED = "parsed"
    FAILED = "failed"
    MANUAL_REVIEW = "manual_review"
    DISMISSED = "dismissed"


class OrderStatus(StrEnum):
    PLACED = "placed"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    DELIVERY_EXCEPTION = "delivery_exception"
    RETURN_IN_PROGRESS = "return_in_progress"
    RETURN_RECEIVED = "return_received"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    PARTIALLY_CANCELLED = "partially_cancelled"
    CLOSED = "closed"
    INFERRED = "inferred"


class OrderLineStatus(StrEnum):
    ORDERED = "ordered"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_INITIATED = "return_initiated"
    RETURNED = "returned"
    REFUNDED = "refunded"


class ShipmentStatus(StrEnum):
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    EXCEPTION = "exception"
    RETURNED = "returned"


class DeliveryStatus(StrEnum):
    DELIVERED = "delivered"
    ATTEMPTED_DELIVERY = "attempted_delivery"
    DELIVERY_EXCEPTION = "delivery_exception"
    LOST = "lost"


class DeliveryIssueType(StrEnum):
    MISSING = "missing"
    DAMAGED = "damaged"
    WRONG_ITEM = "wrong_item"
    NOT_RECEIVED = "not_received"
    STOLEN = "stolen"
    OTHER = "other"


class ReturnStatus(StrEnum):
    INITIATED = "initiated"
    LABEL_ISSUED = "label_issued"
    SHIPPED = "shipped"
    RECEIVED = "received"
    REJECTED = "rejected"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    CLOSED = "closed"


class ReturnMethod(StrEnum):
    MAIL = "mail"
    DROP_OFF = "drop_off"
    PICKUP = "pickup"


OPEN_RETURN_STATUSES: frozenset[str] = frozenset(
    {ReturnStatus.INITIATED, ReturnStatus.LABEL_ISSUED, ReturnStatus.SHIPPED}
)

EXCEPTION_DELIVERY_STATUSES: frozenset[str] = frozenset(
    {DeliveryStatus.DELIVERY_EXCEPTION, DeliveryStatus.LOST}
)


E = TypeVar("E", bound=StrEnum)


def _squash(value: str) -> str:
    return value.lower().replace("_", "").replace(" ", "").replace("-", "")


def coerce_enum(enum_cls: type[E], raw: str | None, default: E | None = None) -> E | None:
    """Map a loosely formatted model value onto *enum_cls*.

    ``"OutForDelivery"``, ``"out for delivery"`` and ``"out_for_delivery"``
    all resolve to the same member.  Unknown values fall back to *default*.
    """
    if raw is None:
        return default
    wanted = _squash(str(raw))
    if not wanted:
        return default
    for member in enum_cls:
        if _squash(member.value) == wanted:
            return member
    return default
