"""Async repositories for the aggregation models."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderpulse.aggregation.references import SYNTHETIC_PREFIX, normalize_order_number
from orderpulse.mail.retailer_matcher import RetailerPattern
from orderpulse.models.enums import ProcessingStatus
from orderpulse.storage.models import EmailMessage, Order, Retailer, Return, Shipment
from orderpulse.utils.dates import utcnow

REVIEW_STATUSES = (ProcessingStatus.FAILED, ProcessingStatus.MANUAL_REVIEW)


# ── Messages ─────────────────────────────────────────────────────────────────


class EmailMessageRepo:
    """Lookups and status transitions for ``email_messages``."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, message: EmailMessage) -> EmailMessage:
        self._session.add(message)
        await self._session.flush()
        return message

    async def get_by_id(self, message_id: UUID) -> EmailMessage | None:
        return await self._session.get(EmailMessage, message_id)

    async def list_review_queue(self, *, offset: int = 0, limit: int = 50) -> list[EmailMessage]:
        """Failed and manual-review messages, oldest first."""
        stmt = (
            select(EmailMessage)
            .where(EmailMessage.processing_status.in_(REVIEW_STATUSES))
            .order_by(EmailMessage.received_at.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_failed(self, message_id: UUID, error: str) -> None:
        """Record a fatal processing error and count the attempt."""
        stmt = (
            update(EmailMessage)
            .where(EmailMessage.id == message_id)
            .values(
                processing_status=ProcessingStatus.FAILED,
                error_message=error[:4000],
                retry_count=EmailMessage.retry_count + 1,
                updated_at=utcnow(),
            )
        )
        await self._session.execute(stmt)
        await self._session.flush()

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(EmailMessage.processing_status, func.count()).group_by(EmailMessage.processing_status)
        result = await self._session.execute(stmt)
        return {status: count for status, count in result.all()}


# ── Retailers ────────────────────────────────────────────────────────────────


class RetailerRepo:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, retailer: Retailer) -> Retailer:
        self._session.add(retailer)
        await self._session.flush()
        return retailer

    async def list_all(self) -> list[Retailer]:
        result = await self._session.execute(select(Retailer).order_by(Retailer.name))
        return list(result.scalars().all())

    async def load_patterns(self) -> list[RetailerPattern]:
        """Domain table for the retailer matcher."""
        return [
            RetailerPattern(
                retailer_id=r.id,
                name=r.name,
                domains=frozenset(d.strip().lower() for d in (r.sender_domains or []) if d),
            )
            for r in await self.list_all()
        ]


# ── Orders ───────────────────────────────────────────────────────────────────


class OrderRepo:
    """Order lookups, including fuzzy reference resolution."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def add(self, order: Order) -> Order:
        self._session.add(order)
        return order

    async def get_by_id(self, order_id: UUID) -> Order | None:
        result = await self._session.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def get_with_children(self, order_id: UUID) -> Order | None:
        """Reload the order and its whole child graph from the database."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_number(self, order_number: str) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.external_order_number == order_number)
            .order_by(Order.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_orders(
        self,
        *,
        status: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[tuple[Order, str | None]]:
        """Orders with their retailer name, newest first."""
        stmt = (
            select(Order, Retailer.name)
            .outerjoin(Retailer, Order.retailer_id == Retailer.id)
            .order_by(Order.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(Order.status == status)
        result = await self._session.execute(stmt)
        return [(order, name) for order, name in result.all()]

    async def get_retailer_name(self, order: Order) -> str | None:
        if order.retailer_id is None:
            return None
        retailer = await self._session.get(Retailer, order.retailer_id)
        return retailer.name if retailer else None

    async def find_by_reference(
        self,
        reference: str | None,
        *,
        retailer_id: UUID | None = None,
        min_fuzzy_length: int = 5,
    ) -> Order | None:
        """Resolve a merchant-printed order reference to a stored order.

        Tries, in order: the raw reference, the normalized reference, and
        (for references of at least *min_fuzzy_length* characters) a stored
        number containing the reference.  Synthetic placeholder numbers never
        take part in containment matching.  *retailer_id* only ranks the
        candidates of a step; orders of other retailers still match.
        """
        if not reference or not reference.strip():
            return None
        raw = reference.strip()
        normalized = normalize_order_number(raw)
        col = Order.external_order_number

        ranking = [Order.created_at.asc()]
        if retailer_id is not None:
            ranking.insert(0, case((Order.retailer_id == retailer_id, 0), else_=1))

        candidates = [col == raw]
        if normalized and normalized != raw:
            candidates.append(col == normalized)
        if len(normalized) >= min_fuzzy_length:
            not_synthetic = ~col.startswith(SYNTHETIC_PREFIX, autoescape=True)
            candidates.append(and_(not_synthetic, col.contains(normalized, autoescape=True)))

        for condition in candidates:
            stmt = select(Order).where(condition).order_by(*ranking).limit(1)
            result = await self._session.execute(stmt)
            found = result.scalars().first()
            if found is not None:
                return found
        return None


# ── Child entities ───────────────────────────────────────────────────────────


class ShipmentRepo:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_tracking(self, tracking_number: str) -> Shipment | None:
        stmt = (
            select(Shipment)
            .where(Shipment.tracking_number == tracking_number.strip())
            .order_by(Shipment.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()


class ReturnRepo:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_rma(self, rma_number: str) -> Return | None:
        stmt = (
            select(Return)
            .where(Return.rma_number == rma_number.strip())
            .order_by(Return.created_at.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

