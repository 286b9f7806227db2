"""SQLAlchemy ORM models for the order aggregation pipeline."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from orderpulse.models.enums import (
    OrderLineStatus,
    OrderStatus,
    ProcessingStatus,
    ShipmentStatus,
)
from orderpulse.utils.dates import utcnow

Money = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class Retailer(Base):
    __tablename__ = "retailers"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200))
    normalized_name: Mapped[str] = mapped_column(String(200), index=True)
    sender_domains: Mapped[list] = mapped_column(JSON, default=list)  # ["amazon.com", "amazon.co.uk"]
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class EmailMessage(Base):
    """One ingested message.  Rows are never deleted."""

    __tablename__ = "email_messages"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    from_address: Mapped[str] = mapped_column(String(320))
    original_from_address: Mapped[str | None] = mapped_column(String(320), nullable=True)
    subject: Mapped[str] = mapped_column(String(998), default="")
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    body_blob_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    body_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    classification_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    classification_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    processing_status: Mapped[str] = mapped_column(String(50), default=ProcessingStatus.PENDING, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    retailer_id: Mapped[UUID | None] = mapped_column(ForeignKey("retailers.id"), nullable=True, index=True)
    # Not unique: different retailers reuse number formats
    external_order_number: Mapped[str] = mapped_column(String(200), index=True)
    order_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(50), default=OrderStatus.PLACED)
    subtotal: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    shipping_cost: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    discount_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    total_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    estimated_delivery_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    estimated_delivery_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_method_summary: Mapped[str | None] = mapped_column(String(200), nullable=True)
    external_order_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_inferred: Mapped[bool] = mapped_column(Boolean, default=False)
    source_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True)
    last_updated_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    lines: Mapped[list[OrderLine]] = relationship(
        back_populates="order", lazy="selectin", cascade="all, delete-orphan",
        order_by="OrderLine.line_number",
    )
    shipments: Mapped[list[Shipment]] = relationship(
        back_populates="order", lazy="selectin", cascade="all, delete-orphan",
        order_by="Shipment.created_at",
    )
    returns: Mapped[list[Return]] = relationship(
        back_populates="order", lazy="selectin", cascade="all, delete-orphan",
        order_by="Return.created_at",
    )
    refunds: Mapped[list[Refund]] = relationship(
        back_populates="order", lazy="selectin", cascade="all, delete-orphan",
        order_by="Refund.created_at",
    )
    events: Mapped[list[OrderEvent]] = relationship(
        back_populates="order", lazy="selectin", cascade="all, delete-orphan",
        order_by="OrderEvent.created_at",
    )


class OrderLine(Base):
    __tablename__ = "order_lines"
    __table_args__ = (UniqueConstraint("order_id", "line_number"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    line_number: Mapped[int] = mapped_column(Integer)
    product_name: Mapped[str] = mapped_column(String(500))
    product_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    line_total: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default=OrderLineStatus.ORDERED)

    order: Mapped[Order] = relationship(back_populates="lines")


class Shipment(Base):
    __tablename__ = "shipments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    carrier_normalized: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    tracking_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ship_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    estimated_delivery: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(50), default=ShipmentStatus.SHIPPED)
    status_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True)
    # Raw parsed items, kept until the order has lines to link them to
    parsed_items_json: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    order: Mapped[Order] = relationship(back_populates="shipments")
    lines: Mapped[list[ShipmentLine]] = relationship(
        back_populates="shipment", lazy="selectin", cascade="all, delete-orphan",
    )
    delivery: Mapped[Delivery | None] = relationship(
        back_populates="shipment", lazy="selectin", uselist=False, cascade="all, delete-orphan",
    )


class ShipmentLine(Base):
    __tablename__ = "shipment_lines"
    __table_args__ = (UniqueConstraint("shipment_id", "order_line_id"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    shipment_id: Mapped[UUID] = mapped_column(ForeignKey("shipments.id"), index=True)
    order_line_id: Mapped[UUID] = mapped_column(ForeignKey("order_lines.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    shipment: Mapped[Shipment] = relationship(back_populates="lines")


class Delivery(Base):
    __tablename__ = "deliveries"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    shipment_id: Mapped[UUID] = mapped_column(ForeignKey("shipments.id"), unique=True)
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivery_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(50))
    issue_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    issue_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    signed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    source_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    shipment: Mapped[Shipment] = relationship(back_populates="delivery")


class Return(Base):
    __tablename__ = "returns"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    rma_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(50))
    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    return_carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    return_tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    return_tracking_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    has_printable_label: Mapped[bool] = mapped_column(Boolean, default=False)
    qr_code_in_email: Mapped[bool] = mapped_column(Boolean, default=False)
    drop_off_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    drop_off_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_by_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_by_retailer_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_refund_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    estimated_refund_timeline: Mapped[str | None] = mapped_column(String(200), nullable=True)
    source_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True)
    parsed_items_json: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    order: Mapped[Order] = relationship(back_populates="returns")
    lines: Mapped[list[ReturnLine]] = relationship(
        back_populates="return_", lazy="selectin", cascade="all, delete-orphan",
    )


class ReturnLine(Base):
    __tablename__ = "return_lines"
    __table_args__ = (UniqueConstraint("return_id", "order_line_id"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    return_id: Mapped[UUID] = mapped_column(ForeignKey("returns.id"), index=True)
    order_line_id: Mapped[UUID] = mapped_column(ForeignKey("order_lines.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    return_: Mapped[Return] = relationship(back_populates="lines")


class Refund(Base):
    __tablename__ = "refunds"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    return_id: Mapped[UUID | None] = mapped_column(ForeignKey("returns.id"), nullable=True)
    refund_amount: Mapped[Decimal] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    refund_method: Mapped[str | None] = mapped_column(String(200), nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    estimated_arrival: Mapped[str | None] = mapped_column(String(200), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    is_partial: Mapped[bool] = mapped_column(Boolean, default=False)
    source_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    order: Mapped[Order] = relationship(back_populates="refunds")


class OrderEvent(Base):
    """Append-only order timeline."""

    __tablename__ = "order_events"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id"), index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    event_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    summary: Mapped[str] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    email_message_id: Mapped[UUID | None] = mapped_column(ForeignKey("email_messages.id"), nullable=True, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)  # shipment, delivery, return, refund
    entity_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    order: Mapped[Order] = relationship(back_populates="events")
