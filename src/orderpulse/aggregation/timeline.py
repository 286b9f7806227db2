"""Append-only order timeline."""
from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

import structlog

from ..storage.models import Order, OrderEvent
from ..utils.dates import utcnow

logger = structlog.get_logger(__name__)


class EventType:
    ORDER_PLACED = "OrderPlaced"
    ORDER_MODIFIED = "OrderModified"
    ORDER_ENRICHED = "OrderEnriched"
    SHIPMENT_CREATED = "ShipmentCreated"
    SHIPMENT_UPDATED = "ShipmentUpdated"
    DELIVERED = "Delivered"
    DELIVERY_ISSUE = "DeliveryIssue"
    RETURN_PREFIX = "Return"
    REFUND_ISSUED = "RefundIssued"
    ORDER_CANCELLED = "OrderCancelled"
    PAYMENT_CONFIRMED = "PaymentConfirmed"
    STATUS_CHANGED = "StatusChanged"


def record_event(
    order: Order,
    event_type: str,
    summary: str,
    *,
    message_id: UUID | None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    details: dict | None = None,
    event_date: datetime | None = None,
) -> OrderEvent | None:
    """Append an event to *order*'s timeline.

    An event with the same message, type and entity is recorded once; a
    re-delivered message therefore adds nothing.  Returns ``None`` when the
    event already exists.
    """
    for existing in order.events:
        if (
            message_id is not None
            and existing.email_message_id == message_id
            and existing.event_type == event_type
            and existing.entity_id == entity_id
        ):
            return None

    event = OrderEvent(
        id=uuid4(),
        order_id=order.id,
        event_type=event_type,
        event_date=event_date or utcnow(),
        summary=summary,
        details=details,
        email_message_id=message_id,
        entity_type=entity_type,
        entity_id=entity_id,
        created_at=utcnow(),
    )
    order.events.append(event)
    logger.debug("order_event_recorded", order_id=str(order.id), event_type=event_type)
    return event
