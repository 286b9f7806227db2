"""Order API routes: aggregated orders and their timelines."""
from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from ...models.enums import OrderStatus
from ...storage.database import get_session
from ...storage.models import Order, OrderEvent, Refund, Return, Shipment
from ...storage.repositories import OrderRepo

router = APIRouter()


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def _money(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _latest_event(order: Order) -> OrderEvent | None:
    if not order.events:
        return None
    return max(order.events, key=lambda e: (e.event_date, e.created_at))


def _serialize_summary(order: Order, retailer_name: str | None) -> dict:
    latest = _latest_event(order)
    return {
        "id": str(order.id),
        "external_order_number": order.external_order_number,
        "retailer": retailer_name,
        "order_date": _iso(order.order_date),
        "status": order.status,
        "total_amount": _money(order.total_amount),
        "currency": order.currency,
        "is_inferred": order.is_inferred,
        "item_count": sum(line.quantity for line in order.lines),
        "item_summary": ", ".join(line.product_name for line in order.lines[:3]),
        "latest_event": latest.summary if latest else None,
        "latest_event_date": _iso(latest.event_date) if latest else None,
    }


def _serialize_shipment(shipment: Shipment, names: dict[UUID, str]) -> dict:
    delivery = shipment.delivery
    return {
        "id": str(shipment.id),
        "carrier": shipment.carrier,
        "carrier_normalized": shipment.carrier_normalized,
        "tracking_number": shipment.tracking_number,
        "tracking_url": shipment.tracking_url,
        "ship_date": _iso(shipment.ship_date),
        "estimated_delivery": _iso(shipment.estimated_delivery),
        "status": shipment.status,
        "status_detail": shipment.status_detail,
        "lines": [
            {
                "order_line_id": str(sl.order_line_id),
                "product_name": names.get(sl.order_line_id),
                "quantity": sl.quantity,
            }
            for sl in shipment.lines
        ],
        "delivery": None if delivery is None else {
            "id": str(delivery.id),
            "delivery_date": _iso(delivery.delivery_date),
            "delivery_location": delivery.delivery_location,
            "status": delivery.status,
            "issue_type": delivery.issue_type,
            "issue_description": delivery.issue_description,
            "photo_url": delivery.photo_url,
        },
    }


def _serialize_return(return_: Return, names: dict[UUID, str]) -> dict:
    return {
        "id": str(return_.id),
        "rma_number": return_.rma_number,
        "status": return_.status,
        "return_reason": return_.return_reason,
        "return_method": return_.return_method,
        "return_carrier": return_.return_carrier,
        "return_tracking_number": return_.return_tracking_number,
        "return_by_date": _iso(return_.return_by_date),
        "lines": [
            {
                "order_line_id": str(rl.order_line_id),
                "product_name": names.get(rl.order_line_id),
                "quantity": rl.quantity,
                "return_reason": rl.return_reason,
            }
            for rl in return_.lines
        ],
    }


def _serialize_refund(refund: Refund) -> dict:
    return {
        "id": str(refund.id),
        "return_id": str(refund.return_id) if refund.return_id else None,
        "refund_amount": _money(refund.refund_amount),
        "currency": refund.currency,
        "refund_method": refund.refund_method,
        "refund_date": _iso(refund.refund_date),
        "estimated_arrival": refund.estimated_arrival,
        "transaction_id": refund.transaction_id,
    }


def _serialize_event(event: OrderEvent) -> dict:
    return {
        "id": str(event.id),
        "event_type": event.event_type,
        "event_date": _iso(event.event_date),
        "summary": event.summary,
        "entity_type": event.entity_type,
        "entity_id": str(event.entity_id) if event.entity_id else None,
    }


def _serialize_order(order: Order, retailer_name: str | None) -> dict:
    names = {line.id: line.product_name for line in order.lines}
    return {
        "id": str(order.id),
        "external_order_number": order.external_order_number,
        "retailer": retailer_name,
        "order_date": _iso(order.order_date),
        "status": order.status,
        "subtotal": _money(order.subtotal),
        "tax_amount": _money(order.tax_amount),
        "shipping_cost": _money(order.shipping_cost),
        "discount_amount": _money(order.discount_amount),
        "total_amount": _money(order.total_amount),
        "currency": order.currency,
        "estimated_delivery_start": _iso(order.estimated_delivery_start),
        "estimated_delivery_end": _iso(order.estimated_delivery_end),
        "shipping_address": order.shipping_address,
        "payment_method_summary": order.payment_method_summary,
        "external_order_url": order.external_order_url,
        "is_inferred": order.is_inferred,
        "lines": [
            {
                "id": str(line.id),
                "line_number": line.line_number,
                "product_name": line.product_name,
                "sku": line.sku,
                "quantity": line.quantity,
                "unit_price": _money(line.unit_price),
                "line_total": _money(line.line_total),
                "status": line.status,
            }
            for line in order.lines
        ],
        "shipments": [_serialize_shipment(s, names) for s in order.shipments],
        "returns": [_serialize_return(r, names) for r in order.returns],
        "refunds": [_serialize_refund(r) for r in order.refunds],
    }


async def _get_order(session, order_id: UUID) -> Order:
    order = await OrderRepo(session).get_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("")
async def list_orders(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status: OrderStatus | None = None,
    session=Depends(get_session),
):
    """List orders, newest first, with an optional status filter."""
    repo = OrderRepo(session)
    rows = await repo.list_orders(status=status, offset=offset, limit=limit)
    return {
        "items": [_serialize_summary(order, name) for order, name in rows],
        "offset": offset,
        "limit": limit,
    }


@router.get("/{order_id}")
async def get_order(order_id: UUID, session=Depends(get_session)):
    """One order with its lines, shipments, deliveries, returns and refunds."""
    order = await _get_order(session, order_id)
    retailer_name = await OrderRepo(session).get_retailer_name(order)
    return _serialize_order(order, retailer_name)


@router.get("/{order_id}/timeline")
async def get_order_timeline(order_id: UUID, session=Depends(get_session)):
    """Order events, most recent first."""
    order = await _get_order(session, order_id)
    events = sorted(order.events, key=lambda e: (e.event_date, e.created_at), reverse=True)
    return {"order_id": str(order.id), "events": [_serialize_event(e) for e in events]}
