"""Completion-output schemas for the classifier and the per-type extractors.

These models mirror the JSON documents the prompt templates ask for
(snake_case keys).  Anything the model returns that does not validate
against them is treated as a null extraction by the router, never as an
exception.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderpulse.models.enums import ClassificationType

T = TypeVar("T")


class _Lenient(BaseModel):
    """Base for model output: unknown keys are ignored, not rejected."""

    model_config = ConfigDict(extra="ignore")


def _positive_quantity(value: Any) -> int:
    if value is None:
        return 1
    quantity = int(value)
    return quantity if quantity > 0 else 1


def _clamp_confidence(value: Any) -> float:
    if value is None:
        return 0.0
    return max(0.0, min(1.0, float(value)))


class _ExtractorResult(_Lenient):
    confidence: float = 0.0
    notes: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        return _clamp_confidence(v)

    def has_root(self) -> bool:
        """True when the result carries an actionable root object."""
        return False


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class PreFilterResponse(_Lenient):
    is_order_related: bool = True


class ClassifierResponse(_Lenient):
    type: str
    confidence: float = 0.0
    secondary_type: str | None = None
    reasoning: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        return _clamp_confidence(v)


class ClassificationResult(BaseModel):
    """Outcome of full classification for one message."""

    type: ClassificationType
    confidence: float = Field(ge=0.0, le=1.0)
    secondary_type: str | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderLineData(_Lenient):
    product_name: str = ""
    product_url: str | None = None
    sku: str | None = None
    quantity: int = 1
    unit_price: Decimal | None = None
    line_total: Decimal | None = None
    image_url: str | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        return _positive_quantity(v)

    @field_validator("product_name", mode="before")
    @classmethod
    def _name(cls, v):
        return (v or "").strip()


class OrderData(_Lenient):
    external_order_number: str | None = None
    retailer_name: str | None = None
    order_date: str | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    shipping_cost: Decimal | None = None
    discount_amount: Decimal | None = None
    total_amount: Decimal | None = None
    currency: str = "USD"
    estimated_delivery_start: str | None = None
    estimated_delivery_end: str | None = None
    shipping_address: str | None = None
    payment_method_summary: str | None = None
    external_order_url: str | None = None
    is_modification: bool = False

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v):
        return v or "USD"


class OrderWithLines(_Lenient):
    order: OrderData
    lines: list[OrderLineData] = Field(default_factory=list)


class OrderParserResult(_ExtractorResult):
    """Single-order emails fill ``order``/``lines``; split shipments from one
    checkout (several order numbers in one email) fill ``orders``."""

    order: OrderData | None = None
    lines: list[OrderLineData] = Field(default_factory=list)
    orders: list[OrderWithLines] | None = None

    def all_orders(self) -> list[OrderWithLines]:
        if self.orders:
            return list(self.orders)
        if self.order is not None:
            return [OrderWithLines(order=self.order, lines=self.lines)]
        return []

    def has_root(self) -> bool:
        return bool(self.all_orders())


# ---------------------------------------------------------------------------
# Shipments & deliveries
# ---------------------------------------------------------------------------


class ItemData(_Lenient):
    """A product reference inside a shipment, return or cancellation."""

    product_name: str = ""
    quantity: int = 1
    return_reason: str | None = None
    unit_price: Decimal | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity(cls, v):
        return _positive_quantity(v)

    @field_validator("product_name", mode="before")
    @classmethod
    def _name(cls, v):
        return (v or "").strip()


class ShipmentData(_Lenient):
    order_reference: str | None = None
    carrier: str | None = None
    carrier_normalized: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    ship_date: str | None = None
    estimated_delivery: str | None = None
    status: str | None = None
    status_detail: str | None = None
    items: list[ItemData] = Field(default_factory=list)


class ShipmentParserResult(_ExtractorResult):
    shipments: list[ShipmentData] = Field(default_factory=list)

    def has_root(self) -> bool:
        return bool(self.shipments)


class DeliveryData(_Lenient):
    order_reference: str | None = None
    tracking_number: str | None = None
    delivery_date: str | None = None
    delivery_location: str | None = None
    status: str | None = None
    issue_type: str | None = None
    issue_description: str | None = None
    signed_by: str | None = None
    photo_url: str | None = None


class DeliveryParserResult(_ExtractorResult):
    delivery: DeliveryData | None = None

    def has_root(self) -> bool:
        return self.delivery is not None


# ---------------------------------------------------------------------------
# Returns, refunds, cancellations, payments
# ---------------------------------------------------------------------------


class ReturnData(_Lenient):
    order_reference: str | None = None
    rma_number: str | None = None
    subtype: str | None = None
    status: str | None = None
    return_reason: str | None = None
    return_method: str | None = None
    return_carrier: str | None = None
    return_tracking_number: str | None = None
    return_tracking_url: str | None = None
    has_printable_label: bool = False
    qr_code_in_email: bool = False
    drop_off_location: str | None = None
    drop_off_address: str | None = None
    return_by_date: str | None = None
    received_by_retailer_date: str | None = None
    rejection_reason: str | None = None
    estimated_refund_amount: Decimal | None = None
    estimated_refund_timeline: str | None = None


class ReturnParserResult(_ExtractorResult):
    return_: ReturnData | None = Field(default=None, alias="return")
    items: list[ItemData] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def has_root(self) -> bool:
        return self.return_ is not None


class RefundData(_Lenient):
    order_reference: str | None = None
    return_rma: str | None = None
    refund_amount: Decimal = Decimal("0")
    currency: str = "USD"
    refund_method: str | None = None
    refund_date: str | None = None
    estimated_arrival: str | None = None
    transaction_id: str | None = None
    is_partial: bool = False
    partial_reason: str | None = None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v):
        return v or "USD"


class RefundParserResult(_ExtractorResult):
    refund: RefundData | None = None

    def has_root(self) -> bool:
        return self.refund is not None


class CancellationData(_Lenient):
    order_reference: str | None = None
    is_full_cancellation: bool = False
    cancellation_reason: str | None = None
    initiated_by: str | None = None
    refund_amount: Decimal | None = None
    refund_method: str | None = None
    refund_timeline: str | None = None


class CancellationParserResult(_ExtractorResult):
    cancellation: CancellationData | None = None
    cancelled_items: list[ItemData] = Field(default_factory=list)
    remaining_items: list[ItemData] = Field(default_factory=list)

    def has_root(self) -> bool:
        return self.cancellation is not None


class PaymentData(_Lenient):
    order_reference: str | None = None
    amount: Decimal = Decimal("0")
    currency: str = "USD"
    payment_method: str | None = None
    transaction_id: str | None = None
    payment_date: str | None = None
    retailer_name: str | None = None


class PaymentParserResult(_ExtractorResult):
    payment: PaymentData | None = None

    def has_root(self) -> bool:
        return self.payment is not None


# ---------------------------------------------------------------------------
# Router output
# ---------------------------------------------------------------------------


class ExtractionOutcome(BaseModel, Generic[T]):
    """What the extraction router hands back for one message.

    ``data`` is ``None`` whenever the completion output was empty, failed
    validation or had no actionable root object.
    """

    data: T | None = None
    confidence: float = 0.0
    needs_review: bool = True
    error: str | None = None
