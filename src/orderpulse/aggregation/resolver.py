"""Order resolution: find-or-create by reference, and in-place enrichment."""
from __future__ import annotations

from typing import Sequence
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..mail.retailer_matcher import RetailerPattern
from ..models.enums import OrderLineStatus, OrderStatus
from ..models.extraction import OrderData, OrderLineData
from ..storage.models import EmailMessage, Order, OrderLine
from ..storage.repositories import OrderRepo
from ..utils.dates import parse_date, parse_datetime
from .references import is_synthetic, normalize_order_number, synthetic_order_number

logger = structlog.get_logger(__name__)

# Fields a later confirmation may fill on an existing order
ENRICHABLE_FIELDS = (
    "subtotal",
    "tax_amount",
    "shipping_cost",
    "discount_amount",
    "total_amount",
    "shipping_address",
    "payment_method_summary",
    "external_order_url",
)


def new_order(
    number: str,
    message: EmailMessage,
    retailer: RetailerPattern | None,
    *,
    inferred: bool,
) -> Order:
    """Transient order with empty child collections."""
    return Order(
        id=uuid4(),
        external_order_number=number,
        retailer_id=retailer.retailer_id if retailer else None,
        order_date=message.received_at,
        status=OrderStatus.PLACED,
        currency="USD",
        is_inferred=inferred,
        source_message_id=message.id,
        last_updated_message_id=message.id,
        lines=[],
        shipments=[],
        returns=[],
        refunds=[],
        events=[],
    )


class OrderResolver:
    """Maps merchant order references onto stored orders."""

    def __init__(self, session: AsyncSession, *, min_fuzzy_length: int = 5):
        self._session = session
        self._orders = OrderRepo(session)
        self._min_fuzzy_length = min_fuzzy_length

    async def find(self, reference: str | None, message: EmailMessage, retailer: RetailerPattern | None = None) -> Order | None:
        if reference and normalize_order_number(reference):
            return await self._orders.find_by_reference(
                reference,
                retailer_id=retailer.retailer_id if retailer else None,
                min_fuzzy_length=self._min_fuzzy_length,
            )
        # Reference-less messages resolve to their own placeholder order
        return await self._orders.get_by_number(synthetic_order_number(message.id))

    async def find_or_create(
        self,
        reference: str | None,
        message: EmailMessage,
        retailer: RetailerPattern | None = None,
    ) -> tuple[Order, bool]:
        """Existing order for *reference*, or a new inferred stub.

        Returns ``(order, created)``.
        """
        order = await self.find(reference, message, retailer)
        if order is not None:
            return order, False

        normalized = normalize_order_number(reference)
        number = normalized or synthetic_order_number(message.id)
        order = self._orders.add(new_order(number, message, retailer, inferred=True))
        await self._session.flush()
        logger.info(
            "order_stub_created",
            order_id=str(order.id),
            reference=reference,
            external_order_number=number,
            retailer=retailer.name if retailer else None,
        )
        return order, True


def apply_order_data(order: Order, data: OrderData, *, overwrite: bool = False) -> list[str]:
    """Copy confirmation fields onto *order*.

    Missing fields are filled; with *overwrite* (order modifications) any
    value present in *data* replaces the stored one.  Returns the names of
    the fields that changed.
    """
    changed: list[str] = []

    def assign(field: str, value) -> None:
        if value is None or value == "":
            return
        current = getattr(order, field)
        if current is None or (overwrite and current != value):
            setattr(order, field, value)
            changed.append(field)

    for field in ENRICHABLE_FIELDS:
        assign(field, getattr(data, field))
    assign("estimated_delivery_start", parse_date(data.estimated_delivery_start))
    assign("estimated_delivery_end", parse_date(data.estimated_delivery_end))

    parsed_order_date = parse_datetime(data.order_date)
    if parsed_order_date is not None and (order.is_inferred or overwrite or order.order_date is None):
        if order.order_date != parsed_order_date:
            order.order_date = parsed_order_date
            changed.append("order_date")

    if data.currency and (order.is_inferred or overwrite) and order.currency != data.currency:
        order.currency = data.currency
        changed.append("currency")

    # A placeholder number gives way to the first real one
    number = normalize_order_number(data.external_order_number)
    if number and is_synthetic(order.external_order_number):
        order.external_order_number = number
        changed.append("external_order_number")

    if order.is_inferred:
        order.is_inferred = False
        changed.append("is_inferred")
    return changed


def add_new_lines(order: Order, lines: Sequence[OrderLineData]) -> list[OrderLine]:
    """Append lines whose product name is not already on *order*."""
    existing = {(line.product_name or "").strip().lower() for line in order.lines}
    next_number = max((line.line_number for line in order.lines), default=0) + 1
    added: list[OrderLine] = []
    for data in lines:
        key = data.product_name.lower()
        if not key or key in existing:
            continue
        line = OrderLine(
            id=uuid4(),
            line_number=next_number,
            product_name=data.product_name,
            product_url=data.product_url,
            sku=data.sku,
            quantity=data.quantity,
            unit_price=data.unit_price,
            line_total=data.line_total,
            image_url=data.image_url,
            status=OrderLineStatus.ORDERED,
        )
        order.lines.append(line)
        existing.add(key)
        added.append(line)
        next_number += 1
    return added
