"""Applies validated extraction results to the order graph.

Each extraction type has one handler.  Every handler resolves (or creates)
the order the message refers to, merges its entities by natural key so a
re-delivered message changes nothing, and returns the orders it touched so
the caller can recompute their status.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ..mail.retailer_matcher import RetailerPattern
from ..models.enums import (
    ClassificationType,
    DeliveryIssueType,
    DeliveryStatus,
    OrderLineStatus,
    OrderStatus,
    ReturnMethod,
    ReturnStatus,
    ShipmentStatus,
    coerce_enum,
)
from ..models.extraction import (
    CancellationParserResult,
    DeliveryParserResult,
    OrderParserResult,
    PaymentParserResult,
    RefundParserResult,
    ReturnParserResult,
    ShipmentData,
    ShipmentParserResult,
)
from ..storage.models import Delivery, EmailMessage, Order, Refund, Return, Shipment
from ..storage.repositories import OrderRepo, ReturnRepo, ShipmentRepo
from ..utils.dates import parse_date, parse_datetime
from .linking import (
    ItemReparser,
    advance_line,
    lines_of,
    link_return_items,
    link_shipment_items,
    reconcile_order,
    return_line_target,
    shipment_line_target,
)
from .references import normalize_order_number, synthetic_order_number
from .resolver import OrderResolver, add_new_lines, apply_order_data, new_order
from .state_machine import DEFAULT_CLOSED_AFTER_DAYS, compute_status
from .timeline import EventType, record_event

logger = structlog.get_logger(__name__)

# Shipment and return updates never move an entity backwards
SHIPMENT_PROGRESSION = {
    ShipmentStatus.SHIPPED: 0,
    ShipmentStatus.IN_TRANSIT: 1,
    ShipmentStatus.OUT_FOR_DELIVERY: 2,
    ShipmentStatus.EXCEPTION: 2,
    ShipmentStatus.DELIVERED: 3,
    ShipmentStatus.RETURNED: 4,
}

RETURN_PROGRESSION = {
    ReturnStatus.INITIATED: 0,
    ReturnStatus.LABEL_ISSUED: 1,
    ReturnStatus.SHIPPED: 2,
    ReturnStatus.RECEIVED: 3,
    ReturnStatus.REJECTED: 3,
    ReturnStatus.REFUND_PENDING: 4,
    ReturnStatus.REFUNDED: 5,
    ReturnStatus.CLOSED: 6,
}

RETURN_DEFAULTS = {
    ClassificationType.RETURN_INITIATION: (ReturnStatus.INITIATED, "ReturnInitiated"),
    ClassificationType.RETURN_LABEL: (ReturnStatus.LABEL_ISSUED, "ReturnLabelIssued"),
    ClassificationType.RETURN_RECEIVED: (ReturnStatus.RECEIVED, "ReturnReceived"),
    ClassificationType.RETURN_REJECTION: (ReturnStatus.REJECTED, "ReturnRejected"),
}

RETURN_SUBTYPES = {
    "returninitiation": ClassificationType.RETURN_INITIATION,
    "returnlabel": ClassificationType.RETURN_LABEL,
    "returnreceived": ClassificationType.RETURN_RECEIVED,
    "returnrejection": ClassificationType.RETURN_REJECTION,
}


def _forward(progression: dict, current: str, new: str) -> bool:
    return progression.get(new, 0) >= progression.get(current, 0)


def _fill(entity, field: str, value) -> None:
    if value is not None and value != "":
        setattr(entity, field, value)


def _money(amount: Decimal | None, currency: str) -> str:
    return f"{amount:.2f} {currency}" if amount is not None else "an unknown amount"


class AggregationEngine:
    """Merges extraction results for one message into the database session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        closed_after_days: int = DEFAULT_CLOSED_AFTER_DAYS,
        min_fuzzy_length: int = 5,
        reparse: ItemReparser | None = None,
    ):
        self._session = session
        self._orders = OrderRepo(session)
        self._shipments = ShipmentRepo(session)
        self._returns = ReturnRepo(session)
        self._resolver = OrderResolver(session, min_fuzzy_length=min_fuzzy_length)
        self._closed_after_days = closed_after_days
        self._reparse = reparse
        self._handlers = {
            OrderParserResult: self._apply_orders,
            ShipmentParserResult: self._apply_shipments,
            DeliveryParserResult: self._apply_delivery,
            ReturnParserResult: self._apply_return,
            RefundParserResult: self._apply_refund,
            CancellationParserResult: self._apply_cancellation,
            PaymentParserResult: self._apply_payment,
        }

    async def apply(
        self,
        classification: ClassificationType,
        data,
        message: EmailMessage,
        retailer: RetailerPattern | None = None,
    ) -> list[Order]:
        """Apply *data* and return the distinct orders it touched."""
        handler = self._handlers.get(type(data))
        if handler is None:
            raise TypeError(f"No aggregation handler for {type(data).__name__}")
        touched = await handler(data, message, retailer, classification)
        unique: dict[UUID, Order] = {}
        for order in touched:
            order.last_updated_message_id = message.id
            unique.setdefault(order.id, order)
        await self._session.flush()
        return list(unique.values())

    async def recalculate_status(
        self, order_id: UUID, message_id: UUID | None = None, now: datetime | None = None
    ) -> OrderStatus | None:
        """Recompute an order's status from a freshly loaded snapshot."""
        await self._session.flush()
        order = await self._orders.get_with_children(order_id)
        if order is None:
            return None
        status = compute_status(order, now=now, closed_after_days=self._closed_after_days)
        if order.status != status:
            previous = order.status
            order.status = status
            record_event(
                order,
                EventType.STATUS_CHANGED,
                f"Status changed from {previous} to {status}",
                message_id=message_id,
                details={"from": str(previous), "to": str(status)},
            )
            logger.info("order_status_changed", order_id=str(order_id), previous=str(previous), status=str(status))
        return status

    # ── Orders ────────────────────────────────────────────────────────────

    async def _apply_orders(self, result: OrderParserResult, message, retailer, classification) -> list[Order]:
        touched = []
        for entry in result.all_orders():
            data = entry.order
            order = await self._resolver.find(data.external_order_number, message, retailer)

            if order is None:
                number = normalize_order_number(data.external_order_number) or synthetic_order_number(message.id)
                order = self._orders.add(new_order(number, message, retailer, inferred=False))
                apply_order_data(order, data, overwrite=True)
                add_new_lines(order, entry.lines)
                record_event(
                    order, EventType.ORDER_PLACED, "Order placed",
                    message_id=message.id, details={"external_order_number": number},
                )
                await self._session.flush()
                logger.info("order_created", order_id=str(order.id), external_order_number=number, lines=len(order.lines))
                touched.append(order)
                continue

            was_inferred = order.is_inferred
            had_lines = bool(order.lines)
            changed = apply_order_data(order, data, overwrite=data.is_modification)
            added = add_new_lines(order, entry.lines)

            if was_inferred:
                record_event(order, EventType.ORDER_PLACED, "Order placed", message_id=message.id,
                             details={"external_order_number": order.external_order_number})
            elif data.is_modification:
                record_event(order, EventType.ORDER_MODIFIED, "Order modified", message_id=message.id,
                             details={"fields": changed, "lines_added": len(added)})
            elif changed or added:
                record_event(order, EventType.ORDER_ENRICHED, "Order details updated", message_id=message.id,
                             details={"fields": changed, "lines_added": len(added)})
            await self._session.flush()
            logger.info(
                "order_enriched",
                order_id=str(order.id),
                fields=changed,
                lines_added=len(added),
                was_inferred=was_inferred,
            )

            if not had_lines and order.lines:
                await reconcile_order(order, self._reparse)
            touched.append(order)
        return touched

    # ── Shipments ─────────────────────────────────────────────────────────

    async def _apply_shipments(self, result: ShipmentParserResult, message, retailer, classification) -> list[Order]:
        touched = []
        for data in result.shipments:
            order, _ = await self._resolver.find_or_create(data.order_reference, message, retailer)
            shipment = self._find_shipment(order, data, message)
            status = coerce_enum(ShipmentStatus, data.status)

            if shipment is None:
                shipment = Shipment(
                    id=uuid4(),
                    carrier=data.carrier,
                    carrier_normalized=(data.carrier_normalized or "").lower() or None,
                    tracking_number=(data.tracking_number or "").strip() or None,
                    tracking_url=data.tracking_url,
                    ship_date=parse_datetime(data.ship_date),
                    estimated_delivery=parse_date(data.estimated_delivery),
                    status=status or ShipmentStatus.SHIPPED,
                    status_detail=data.status_detail,
                    source_message_id=message.id,
                    lines=[],
                    delivery=None,
                )
                order.shipments.append(shipment)
                record_event(
                    order, EventType.SHIPMENT_CREATED,
                    f"Shipped via {data.carrier or 'unknown carrier'}",
                    message_id=message.id, entity_type="shipment", entity_id=shipment.id,
                    details={"tracking_number": shipment.tracking_number},
                )
                logger.info("shipment_created", order_id=str(order.id), tracking_number=shipment.tracking_number)
            else:
                if status is not None and _forward(SHIPMENT_PROGRESSION, shipment.status, status):
                    shipment.status = status
                _fill(shipment, "status_detail", data.status_detail)
                _fill(shipment, "estimated_delivery", parse_date(data.estimated_delivery))
                _fill(shipment, "tracking_url", data.tracking_url)
                if shipment.carrier is None:
                    _fill(shipment, "carrier", data.carrier)
                # Re-delivery of the creating message is not an update
                if shipment.source_message_id != message.id:
                    record_event(
                        order, EventType.SHIPMENT_UPDATED, f"Shipment updated: {shipment.status}",
                        message_id=message.id, entity_type="shipment", entity_id=shipment.id,
                        details={"status_detail": data.status_detail},
                    )

            link_shipment_items(order, shipment, data.items)
            target = shipment_line_target(shipment)
            for line in lines_of(order, (sl.order_line_id for sl in shipment.lines)):
                advance_line(line, target)
            touched.append(order)
        return touched

    @staticmethod
    def _find_shipment(order: Order, data: ShipmentData, message: EmailMessage) -> Shipment | None:
        tracking = (data.tracking_number or "").strip()
        for shipment in order.shipments:
            if tracking and shipment.tracking_number == tracking:
                return shipment
            if not tracking and shipment.tracking_number is None and shipment.source_message_id == message.id:
                return shipment
        return None

    # ── Deliveries ────────────────────────────────────────────────────────

    @staticmethod
    def _untracked_delivery_target(order: Order, message: EmailMessage) -> Shipment | None:
        """Shipment a delivery without a tracking number belongs to.

        The shipment this message already delivered, else the first one still
        awaiting a delivery, else the first shipment of the order.
        """
        for shipment in order.shipments:
            if shipment.delivery is not None and shipment.delivery.source_message_id == message.id:
                return shipment
        for shipment in order.shipments:
            if shipment.delivery is None:
                return shipment
        return order.shipments[0] if order.shipments else None

    async def _apply_delivery(self, result: DeliveryParserResult, message, retailer, classification) -> list[Order]:
        data = result.delivery
        shipment: Shipment | None = None
        order: Order | None = None
        tracking = (data.tracking_number or "").strip() or None

        if tracking:
            shipment = await self._shipments.get_by_tracking(tracking)
            if shipment is not None:
                order = await self._orders.get_by_id(shipment.order_id)

        if order is None:
            order, _ = await self._resolver.find_or_create(data.order_reference, message, retailer)
            if shipment is None:
                shipment = self._untracked_delivery_target(order, message)

        if shipment is None:
            shipment = Shipment(
                id=uuid4(),
                tracking_number=tracking,
                status=ShipmentStatus.DELIVERED,
                source_message_id=message.id,
                lines=[],
                delivery=None,
            )
            order.shipments.append(shipment)
            logger.info("shipment_synthesized_from_delivery", order_id=str(order.id), tracking_number=tracking)

        status = coerce_enum(DeliveryStatus, data.status, DeliveryStatus.DELIVERED)
        issue = coerce_enum(DeliveryIssueType, data.issue_type, DeliveryIssueType.OTHER) if data.issue_type else None

        delivery = shipment.delivery
        if delivery is None:
            delivery = Delivery(
                id=uuid4(),
                delivery_date=parse_datetime(data.delivery_date) or message.received_at,
                delivery_location=data.delivery_location or data.signed_by,
                status=status,
                issue_type=issue,
                issue_description=data.issue_description,
                signed_by=data.signed_by,
                photo_url=data.photo_url,
                source_message_id=message.id,
            )
            shipment.delivery = delivery
        else:
            delivery.status = status
            delivery.issue_type = issue
            delivery.issue_description = data.issue_description
            _fill(delivery, "delivery_date", parse_datetime(data.delivery_date))
            _fill(delivery, "delivery_location", data.delivery_location)

        delivered = status == DeliveryStatus.DELIVERED
        shipment.status = ShipmentStatus.DELIVERED if delivered else ShipmentStatus.EXCEPTION
        if delivered:
            for line in lines_of(order, (sl.order_line_id for sl in shipment.lines)):
                advance_line(line, OrderLineStatus.DELIVERED)

        record_event(
            order,
            EventType.DELIVERED if delivered else EventType.DELIVERY_ISSUE,
            f"Delivered to {data.delivery_location or 'address'}" if delivered else f"Delivery issue: {issue or status}",
            message_id=message.id, entity_type="delivery", entity_id=delivery.id,
            details={"issue_description": data.issue_description} if data.issue_description else None,
        )
        return [order]

    # ── Returns ───────────────────────────────────────────────────────────

    async def _apply_return(self, result: ReturnParserResult, message, retailer, classification) -> list[Order]:
        data = result.return_
        order, _ = await self._resolver.find_or_create(data.order_reference, message, retailer)

        kind = RETURN_SUBTYPES.get((data.subtype or "").lower().replace("_", ""), classification)
        default_status, event_type = RETURN_DEFAULTS.get(kind, RETURN_DEFAULTS[ClassificationType.RETURN_INITIATION])
        status = coerce_enum(ReturnStatus, data.status, default_status)
        rma = (data.rma_number or "").strip() or None

        ret = None
        for candidate in order.returns:
            if (rma and candidate.rma_number == rma) or (not rma and candidate.source_message_id == message.id):
                ret = candidate
                break

        if ret is None:
            ret = Return(
                id=uuid4(),
                rma_number=rma,
                status=status,
                return_reason=data.return_reason,
                return_method=coerce_enum(ReturnMethod, data.return_method),
                return_carrier=data.return_carrier,
                return_tracking_number=data.return_tracking_number,
                return_tracking_url=data.return_tracking_url,
                has_printable_label=data.has_printable_label,
                qr_code_in_email=data.qr_code_in_email,
                drop_off_location=data.drop_off_location,
                drop_off_address=data.drop_off_address,
                return_by_date=parse_date(data.return_by_date),
                received_by_retailer_date=parse_datetime(data.received_by_retailer_date),
                rejection_reason=data.rejection_reason,
                estimated_refund_amount=data.estimated_refund_amount,
                estimated_refund_timeline=data.estimated_refund_timeline,
                source_message_id=message.id,
                lines=[],
            )
            order.returns.append(ret)
            logger.info("return_created", order_id=str(order.id), rma_number=rma, status=str(status))
        else:
            if _forward(RETURN_PROGRESSION, ret.status, status):
                ret.status = status
            for field in (
                "return_reason", "return_carrier", "return_tracking_number", "return_tracking_url",
                "drop_off_location", "drop_off_address", "rejection_reason",
                "estimated_refund_amount", "estimated_refund_timeline",
            ):
                _fill(ret, field, getattr(data, field))
            _fill(ret, "return_method", coerce_enum(ReturnMethod, data.return_method))
            _fill(ret, "return_by_date", parse_date(data.return_by_date))
            _fill(ret, "received_by_retailer_date", parse_datetime(data.received_by_retailer_date))
            ret.has_printable_label = ret.has_printable_label or data.has_printable_label
            ret.qr_code_in_email = ret.qr_code_in_email or data.qr_code_in_email

        link_return_items(order, ret, result.items)
        target = return_line_target(ret)
        if target is not None:
            for line in lines_of(order, (rl.order_line_id for rl in ret.lines)):
                advance_line(line, target)

        summaries = {
            "ReturnLabelIssued": f"Return label issued (RMA: {rma})",
            "ReturnReceived": "Return received by retailer",
            "ReturnRejected": f"Return rejected: {data.rejection_reason}",
        }
        record_event(
            order, event_type, summaries.get(event_type, f"Return initiated (RMA: {rma})"),
            message_id=message.id, entity_type="return", entity_id=ret.id,
            details={"return_reason": data.return_reason} if data.return_reason else None,
        )
        return [order]

    # ── Refunds ───────────────────────────────────────────────────────────

    async def _apply_refund(self, result: RefundParserResult, message, retailer, classification) -> list[Order]:
        data = result.refund
        rma = (data.return_rma or "").strip() or None
        order: Order | None = None
        ret: Return | None = None

        if rma and not normalize_order_number(data.order_reference):
            ret = await self._returns.get_by_rma(rma)
            if ret is not None:
                order = await self._orders.get_by_id(ret.order_id)
        if order is None:
            order, _ = await self._resolver.find_or_create(data.order_reference, message, retailer)
        if rma and (ret is None or ret.order_id != order.id):
            ret = next((r for r in order.returns if r.rma_number == rma), None)

        refund = self._find_refund(order, data.transaction_id, message)
        if refund is None:
            refund = Refund(
                id=uuid4(),
                return_id=ret.id if ret else None,
                refund_amount=data.refund_amount,
                currency=data.currency,
                refund_method=data.refund_method,
                refund_date=parse_datetime(data.refund_date),
                estimated_arrival=data.estimated_arrival,
                transaction_id=(data.transaction_id or "").strip() or None,
                is_partial=data.is_partial,
                source_message_id=message.id,
            )
            order.refunds.append(refund)
            logger.info("refund_recorded", order_id=str(order.id), amount=str(data.refund_amount))

        if ret is not None:
            ret.status = ReturnStatus.REFUNDED
            for line in lines_of(order, (rl.order_line_id for rl in ret.lines)):
                advance_line(line, OrderLineStatus.REFUNDED)

        record_event(
            order, EventType.REFUND_ISSUED, f"Refund of {_money(data.refund_amount, data.currency)} issued",
            message_id=message.id, entity_type="refund", entity_id=refund.id,
            details={"refund_method": data.refund_method, "estimated_arrival": data.estimated_arrival},
        )
        return [order]

    @staticmethod
    def _find_refund(order: Order, transaction_id: str | None, message: EmailMessage) -> Refund | None:
        txn = (transaction_id or "").strip()
        for refund in order.refunds:
            if txn and refund.transaction_id == txn:
                return refund
            if not txn and refund.transaction_id is None and refund.source_message_id == message.id:
                return refund
        return None

    # ── Cancellations ─────────────────────────────────────────────────────

    async def _apply_cancellation(self, result: CancellationParserResult, message, retailer, classification) -> list[Order]:
        data = result.cancellation
        order, _ = await self._resolver.find_or_create(data.order_reference, message, retailer)

        if data.is_full_cancellation:
            targets = list(order.lines)
        else:
            targets = []
            for item in result.cancelled_items:
                name = item.product_name.lower()
                targets.extend(
                    line for line in order.lines
                    if name and name in (line.product_name or "").lower() and line not in targets
                )
        cancelled = 0
        for line in targets:
            if line.status != OrderLineStatus.CANCELLED:
                line.status = OrderLineStatus.CANCELLED
                cancelled += 1

        if data.refund_amount is not None and data.refund_amount > 0 and self._find_refund(order, None, message) is None:
            order.refunds.append(Refund(
                id=uuid4(),
                refund_amount=data.refund_amount,
                currency=order.currency or "USD",
                refund_method=data.refund_method,
                estimated_arrival=data.refund_timeline,
                source_message_id=message.id,
            ))

        summary = (
            "Order cancelled" if data.is_full_cancellation
            else f"Partial cancellation: {len(result.cancelled_items)} item(s)"
        )
        record_event(
            order, EventType.ORDER_CANCELLED, summary, message_id=message.id,
            details={"reason": data.cancellation_reason, "initiated_by": data.initiated_by},
        )
        logger.info("order_cancellation_applied", order_id=str(order.id), lines_cancelled=cancelled)
        return [order]

    # ── Payments ──────────────────────────────────────────────────────────

    async def _apply_payment(self, result: PaymentParserResult, message, retailer, classification) -> list[Order]:
        data = result.payment
        order, _ = await self._resolver.find_or_create(data.order_reference, message, retailer)
        _fill(order, "payment_method_summary", data.payment_method)
        record_event(
            order, EventType.PAYMENT_CONFIRMED, f"Payment of {_money(data.amount, data.currency)} confirmed",
            message_id=message.id, details={"payment_method": data.payment_method, "transaction_id": data.transaction_id},
        )
        return [order]
