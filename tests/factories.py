"""Test data factories for building test objects."""
import json
from datetime import datetime
from uuid import uuid4
from unittest.mock import AsyncMock

from orderpulse.llm.base import LLMClient, LLMResponse
from orderpulse.models.enums import (
    DeliveryStatus,
    OrderLineStatus,
    OrderStatus,
    ProcessingStatus,
    ShipmentStatus,
)
from orderpulse.storage.models import (
    Delivery,
    EmailMessage,
    Order,
    OrderLine,
    Refund,
    Retailer,
    Return,
    ShipmentLine,
    Shipment,
)

RECEIVED_AT = datetime(2026, 3, 2, 9, 30)


# ── Messages & retailers ─────────────────────────────────────────────────────


def make_message(
    subject: str = "Your order has shipped",
    from_address: str = "ship-confirm@amazon.com",
    status: str = ProcessingStatus.PENDING,
    classification_type: str | None = None,
    confidence: float | None = None,
    body_preview: str = "Your package is on its way.",
    **overrides,
) -> EmailMessage:
    fields = dict(
        id=uuid4(),
        from_address=from_address,
        original_from_address=None,
        subject=subject,
        received_at=RECEIVED_AT,
        body_blob_url=None,
        body_preview=body_preview,
        classification_type=classification_type,
        classification_confidence=confidence,
        processing_status=status,
        error_message=None,
        retry_count=0,
    )
    fields.update(overrides)
    return EmailMessage(**fields)


def make_retailer(name: str = "Amazon", domains: list[str] | None = None) -> Retailer:
    return Retailer(
        id=uuid4(),
        name=name,
        normalized_name=name.lower(),
        sender_domains=domains if domains is not None else ["amazon.com"],
    )


# ── Order graph (transient, for the state machine) ───────────────────────────


def make_line(
    product_name: str = "Blue Widget",
    quantity: int = 1,
    status: str = OrderLineStatus.ORDERED,
    line_number: int = 1,
) -> OrderLine:
    return OrderLine(
        id=uuid4(),
        line_number=line_number,
        product_name=product_name,
        quantity=quantity,
        status=status,
    )


def make_shipment(
    lines: list[OrderLine] | None = None,
    status: str = ShipmentStatus.SHIPPED,
    delivery: Delivery | None = None,
    tracking_number: str | None = "1Z999AA10123456784",
) -> Shipment:
    return Shipment(
        id=uuid4(),
        tracking_number=tracking_number,
        status=status,
        lines=[
            ShipmentLine(id=uuid4(), order_line_id=line.id, quantity=line.quantity)
            for line in (lines or [])
        ],
        delivery=delivery,
    )


def make_delivery(
    status: str = DeliveryStatus.DELIVERED,
    delivery_date: datetime | None = RECEIVED_AT,
) -> Delivery:
    return Delivery(id=uuid4(), status=status, delivery_date=delivery_date)


def make_return(status: str, rma_number: str | None = "RMA-1") -> Return:
    return Return(id=uuid4(), status=status, rma_number=rma_number, lines=[])


def make_order(
    lines: list[OrderLine] | None = None,
    shipments: list[Shipment] | None = None,
    returns: list[Return] | None = None,
    refunds: list[Refund] | None = None,
    external_order_number: str = "112-9387462-1029384",
    status: str = OrderStatus.PLACED,
) -> Order:
    return Order(
        id=uuid4(),
        external_order_number=external_order_number,
        status=status,
        currency="USD",
        is_inferred=False,
        lines=lines or [],
        shipments=shipments or [],
        returns=returns or [],
        refunds=refunds or [],
        events=[],
    )


# ── Completion payloads ──────────────────────────────────────────────────────


def llm_response(payload, model: str = "mock-model") -> LLMResponse:
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return LLMResponse(content=content, model=model, input_tokens=100, output_tokens=50)


def scripted_client(*payloads) -> AsyncMock:
    """Mock client answering successive calls with *payloads* in order."""
    client = AsyncMock(spec=LLMClient)
    client.get_model_name.return_value = "mock-model"
    client.complete_text.side_effect = [llm_response(p) for p in payloads]
    return client


def classification_payload(type_: str = "shipment_confirmation", confidence: float = 0.95) -> dict:
    return {"type": type_, "confidence": confidence, "reasoning": "test"}


def order_payload(
    number: str | None = "112-9387462-1029384",
    products: list[str] | None = None,
    confidence: float = 0.95,
    **order_fields,
) -> dict:
    order = {"external_order_number": number, "retailer_name": "Amazon", "currency": "USD"}
    order.update(order_fields)
    return {
        "order": order,
        "lines": [
            {"product_name": name, "quantity": 1, "unit_price": "19.99"}
            for name in (products if products is not None else ["Blue Widget"])
        ],
        "confidence": confidence,
    }


def shipment_payload(
    reference: str | None = "112-9387462-1029384",
    tracking: str | None = "1Z999AA10123456784",
    items: list[str] | None = None,
    status: str = "shipped",
    confidence: float = 0.95,
) -> dict:
    return {
        "shipments": [{
            "order_reference": reference,
            "carrier": "UPS",
            "carrier_normalized": "ups",
            "tracking_number": tracking,
            "status": status,
            "items": [{"product_name": name, "quantity": 1} for name in (items or [])],
        }],
        "confidence": confidence,
    }


def delivery_payload(
    reference: str | None = "112-9387462-1029384",
    tracking: str | None = "1Z999AA10123456784",
    status: str = "delivered",
    confidence: float = 0.95,
    **fields,
) -> dict:
    delivery = {
        "order_reference": reference,
        "tracking_number": tracking,
        "delivery_date": "2026-03-04T15:00:00Z",
        "delivery_location": "Front door",
        "status": status,
    }
    delivery.update(fields)
    return {"delivery": delivery, "confidence": confidence}


def return_payload(
    reference: str | None = "112-9387462-1029384",
    rma: str | None = "RMA-7781",
    subtype: str = "return_initiation",
    items: list[str] | None = None,
    confidence: float = 0.95,
    **fields,
) -> dict:
    ret = {"order_reference": reference, "rma_number": rma, "subtype": subtype}
    ret.update(fields)
    return {
        "return": ret,
        "items": [{"product_name": name, "quantity": 1} for name in (items or [])],
        "confidence": confidence,
    }


def refund_payload(
    reference: str | None = "112-9387462-1029384",
    amount: str = "19.99",
    rma: str | None = None,
    transaction_id: str | None = "TXN-1",
    confidence: float = 0.95,
) -> dict:
    return {
        "refund": {
            "order_reference": reference,
            "return_rma": rma,
            "refund_amount": amount,
            "currency": "USD",
            "refund_method": "Original payment method",
            "transaction_id": transaction_id,
        },
        "confidence": confidence,
    }


def cancellation_payload(
    reference: str | None = "112-9387462-1029384",
    full: bool = True,
    items: list[str] | None = None,
    refund_amount: str | None = None,
    confidence: float = 0.95,
) -> dict:
    return {
        "cancellation": {
            "order_reference": reference,
            "is_full_cancellation": full,
            "cancellation_reason": "Customer request",
            "refund_amount": refund_amount,
        },
        "cancelled_items": [{"product_name": name, "quantity": 1} for name in (items or [])],
        "confidence": confidence,
    }
