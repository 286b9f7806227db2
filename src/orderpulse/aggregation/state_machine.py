"""Derives an order's lifecycle status from its child entities.

``compute_status`` is a pure function over an order-shaped object (lines,
shipments with their delivery, returns, refunds).  It never looks at the
order's current status, so recomputing after any change is always safe.
"""
from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from ..models.enums import (
    EXCEPTION_DELIVERY_STATUSES,
    OPEN_RETURN_STATUSES,
    DeliveryStatus,
    OrderLineStatus,
    OrderStatus,
    ReturnStatus,
    ShipmentStatus,
)
from ..utils.dates import utcnow

logger = structlog.get_logger(__name__)

DEFAULT_CLOSED_AFTER_DAYS = 30


def _is_delivered(shipment) -> bool:
    if shipment.delivery is not None:
        return shipment.delivery.status == DeliveryStatus.DELIVERED
    return shipment.status == ShipmentStatus.DELIVERED


def _has_exception(shipments) -> bool:
    return any(
        s.delivery is not None and s.delivery.status in EXCEPTION_DELIVERY_STATUSES
        for s in shipments
    )


def _linked_quantity(shipments) -> int:
    return sum(sl.quantity for s in shipments for sl in s.lines)


def compute_status(order, now: datetime | None = None, closed_after_days: int = DEFAULT_CLOSED_AFTER_DAYS) -> OrderStatus:
    """Aggregate status of *order* at time *now* (naive UTC)."""
    now = now or utcnow()
    lines = list(order.lines)
    shipments = list(order.shipments)
    returns = list(order.returns)

    if not lines:
        return _status_without_lines(order, shipments, returns)

    total_qty = sum(l.quantity for l in lines)
    cancelled_qty = sum(l.quantity for l in lines if l.status == OrderLineStatus.CANCELLED)
    active_qty = total_qty - cancelled_qty

    if all(l.status == OrderLineStatus.CANCELLED for l in lines):
        return OrderStatus.CANCELLED

    if all(l.status in (OrderLineStatus.REFUNDED, OrderLineStatus.CANCELLED) for l in lines):
        return OrderStatus.REFUNDED

    if _has_exception(shipments):
        return OrderStatus.DELIVERY_EXCEPTION

    has_received_return = any(r.status == ReturnStatus.RECEIVED for r in returns)
    has_open_return = any(r.status in OPEN_RETURN_STATUSES for r in returns)
    if has_received_return:
        return OrderStatus.RETURN_RECEIVED
    if has_open_return:
        return OrderStatus.RETURN_IN_PROGRESS

    delivered = [s for s in shipments if _is_delivered(s)]
    delivered_qty = _linked_quantity(delivered)
    shipped_qty = _linked_quantity(shipments)

    if delivered_qty >= active_qty:
        delivery_dates = [
            s.delivery.delivery_date for s in delivered
            if s.delivery is not None and s.delivery.delivery_date is not None
        ]
        if delivery_dates and now - max(delivery_dates) > timedelta(days=closed_after_days):
            return OrderStatus.CLOSED
        return OrderStatus.DELIVERED

    if delivered_qty > 0:
        return OrderStatus.PARTIALLY_DELIVERED

    if any(s.status == ShipmentStatus.OUT_FOR_DELIVERY for s in shipments):
        return OrderStatus.OUT_FOR_DELIVERY
    if any(s.status == ShipmentStatus.IN_TRANSIT for s in shipments):
        return OrderStatus.IN_TRANSIT

    if shipped_qty >= active_qty:
        return OrderStatus.SHIPPED
    if shipped_qty > 0:
        return OrderStatus.PARTIALLY_SHIPPED

    if cancelled_qty > 0:
        return OrderStatus.PARTIALLY_CANCELLED
    return OrderStatus.PLACED


def _status_without_lines(order, shipments, returns) -> OrderStatus:
    # Stub orders: no line-level tracking yet, read the child entities directly
    if any(r.status == ReturnStatus.RECEIVED for r in returns):
        return OrderStatus.RETURN_RECEIVED
    if any(r.status in OPEN_RETURN_STATUSES for r in returns):
        return OrderStatus.RETURN_IN_PROGRESS
    if list(order.refunds):
        return OrderStatus.REFUNDED
    if _has_exception(shipments):
        return OrderStatus.DELIVERY_EXCEPTION
    if any(s.delivery is not None and s.delivery.status == DeliveryStatus.DELIVERED for s in shipments):
        return OrderStatus.DELIVERED
    if any(s.status == ShipmentStatus.OUT_FOR_DELIVERY for s in shipments):
        return OrderStatus.OUT_FOR_DELIVERY
    if any(s.status == ShipmentStatus.DELIVERED for s in shipments):
        return OrderStatus.DELIVERED
    if any(s.status == ShipmentStatus.IN_TRANSIT for s in shipments):
        return OrderStatus.IN_TRANSIT
    if shipments:
        return OrderStatus.SHIPPED
    return OrderStatus.PLACED
