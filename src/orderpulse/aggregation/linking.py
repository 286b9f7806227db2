"""Linking shipment and return items to order lines.

Items are matched to lines by case-insensitive containment of the item
name in the line's product name.  When the order has no lines yet the raw
items are kept as a JSON snapshot on the shipment or return, and linked
later by ``reconcile_order`` once the confirmation arrives.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Iterable, Sequence
from uuid import uuid4

import structlog

from ..models.enums import DeliveryStatus, OrderLineStatus, ReturnStatus, ShipmentStatus
from ..models.extraction import ItemData
from ..storage.models import Order, OrderLine, Return, ReturnLine, Shipment, ShipmentLine

logger = structlog.get_logger(__name__)

# Forward-only progression; cancelled lines are never advanced
LINE_PROGRESSION = {
    OrderLineStatus.ORDERED: 0,
    OrderLineStatus.SHIPPED: 1,
    OrderLineStatus.DELIVERED: 2,
    OrderLineStatus.RETURN_INITIATED: 3,
    OrderLineStatus.RETURNED: 4,
    OrderLineStatus.REFUNDED: 5,
}

ItemReparser = Callable[[Shipment | Return], Awaitable[list[ItemData] | None]]


def advance_line(line: OrderLine, target: OrderLineStatus) -> bool:
    """Move *line* forward to *target*.  Returns True if the status changed."""
    if line.status == OrderLineStatus.CANCELLED:
        return False
    current = LINE_PROGRESSION.get(line.status, 0)
    if LINE_PROGRESSION[target] <= current:
        return False
    line.status = target
    return True


def match_line(lines: Iterable[OrderLine], product_name: str | None) -> OrderLine | None:
    name = (product_name or "").strip().lower()
    if not name:
        return None
    for line in lines:
        if name in (line.product_name or "").lower():
            return line
    return None


def items_snapshot(items: Sequence[ItemData]) -> list[dict] | None:
    if not items:
        return None
    return [item.model_dump(mode="json", exclude_none=True) for item in items]


def items_from_snapshot(snapshot: list | None) -> list[ItemData] | None:
    if snapshot is None:
        return None
    return [ItemData.model_validate(raw) for raw in snapshot]


def shipment_line_target(shipment: Shipment) -> OrderLineStatus:
    delivered = shipment.status == ShipmentStatus.DELIVERED or (
        shipment.delivery is not None and shipment.delivery.status == DeliveryStatus.DELIVERED
    )
    return OrderLineStatus.DELIVERED if delivered else OrderLineStatus.SHIPPED


def return_line_target(ret: Return) -> OrderLineStatus | None:
    if ret.status == ReturnStatus.REJECTED:
        return None
    if ret.status == ReturnStatus.REFUNDED:
        return OrderLineStatus.REFUNDED
    if ret.status in (ReturnStatus.RECEIVED, ReturnStatus.REFUND_PENDING, ReturnStatus.CLOSED):
        return OrderLineStatus.RETURNED
    return OrderLineStatus.RETURN_INITIATED


def link_shipment_items(order: Order, shipment: Shipment, items: Sequence[ItemData]) -> int:
    """Create missing shipment lines for *items*.  Returns the number created.

    With no order lines to link against, *items* are stored as the
    shipment's snapshot instead.
    """
    if not order.lines:
        if items and shipment.parsed_items_json is None:
            shipment.parsed_items_json = items_snapshot(items)
        return 0

    linked = {sl.order_line_id for sl in shipment.lines}
    created = 0
    target = shipment_line_target(shipment)
    for item in items:
        line = match_line(order.lines, item.product_name)
        if line is None:
            logger.debug("shipment_item_unmatched", product_name=item.product_name)
            continue
        if line.id not in linked:
            shipment.lines.append(ShipmentLine(id=uuid4(), order_line_id=line.id, quantity=item.quantity))
            linked.add(line.id)
            created += 1
        advance_line(line, target)
    return created


def link_return_items(order: Order, ret: Return, items: Sequence[ItemData]) -> int:
    """Return counterpart of ``link_shipment_items``."""
    if not order.lines:
        if items and ret.parsed_items_json is None:
            ret.parsed_items_json = items_snapshot(items)
        return 0

    linked = {rl.order_line_id for rl in ret.lines}
    created = 0
    target = return_line_target(ret)
    for item in items:
        line = match_line(order.lines, item.product_name)
        if line is None:
            logger.debug("return_item_unmatched", product_name=item.product_name)
            continue
        if line.id not in linked:
            ret.lines.append(ReturnLine(
                id=uuid4(),
                order_line_id=line.id,
                quantity=item.quantity,
                return_reason=item.return_reason,
            ))
            linked.add(line.id)
            created += 1
        if target is not None:
            advance_line(line, target)
    return created


def lines_of(order: Order, linked_ids: Iterable) -> list[OrderLine]:
    wanted = set(linked_ids)
    return [line for line in order.lines if line.id in wanted]


async def reconcile_order(order: Order, reparse: ItemReparser | None = None) -> int:
    """Link every shipment and return of *order* to its (new) lines.

    Items come from the stored snapshot, or from *reparse* when no snapshot
    was kept.  Only links that do not exist yet are created.  Returns the
    number of links created.
    """
    if not order.lines:
        return 0

    created = 0
    for shipment in order.shipments:
        items = items_from_snapshot(shipment.parsed_items_json)
        if items is None and reparse is not None:
            items = await reparse(shipment)
        if items:
            created += link_shipment_items(order, shipment, items)

    for ret in order.returns:
        items = items_from_snapshot(ret.parsed_items_json)
        if items is None and reparse is not None:
            items = await reparse(ret)
        if items:
            created += link_return_items(order, ret, items)

    if created:
        logger.info("order_reconciled", order_id=str(order.id), links_created=created)
    return created
