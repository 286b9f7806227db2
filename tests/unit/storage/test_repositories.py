"""Test message, retailer and child-entity repositories."""
from datetime import timedelta
import pytest
from orderpulse.models.enums import ProcessingStatus
from orderpulse.storage.repositories import EmailMessageRepo, RetailerRepo, ShipmentRepo
from tests.factories import RECEIVED_AT, make_message, make_order, make_retailer, make_shipment


class TestEmailMessageRepo:
    @pytest.mark.asyncio
    async def test_review_queue_oldest_first(self, session):
        newer = make_message(status=ProcessingStatus.MANUAL_REVIEW, received_at=RECEIVED_AT + timedelta(hours=1))
        older = make_message(status=ProcessingStatus.FAILED)
        parsed = make_message(status=ProcessingStatus.PARSED)
        session.add_all([newer, older, parsed])
        await session.commit()

        queue = await EmailMessageRepo(session).list_review_queue()
        assert [m.id for m in queue] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_mark_failed_counts_attempts(self, session):
        message = make_message(status=ProcessingStatus.PARSING)
        session.add(message)
        await session.commit()

        repo = EmailMessageRepo(session)
        await repo.mark_failed(message.id, "CompletionError: down")
        await repo.mark_failed(message.id, "CompletionError: still down")
        await session.commit()
        await session.refresh(message)

        assert message.processing_status == ProcessingStatus.FAILED
        assert message.retry_count == 2
        assert message.error_message == "CompletionError: still down"

    @pytest.mark.asyncio
    async def test_count_by_status(self, session):
        session.add_all([
            make_message(status=ProcessingStatus.PARSED),
            make_message(status=ProcessingStatus.PARSED),
            make_message(status=ProcessingStatus.FAILED),
        ])
        await session.commit()
        counts = await EmailMessageRepo(session).count_by_status()
        assert counts == {"parsed": 2, "failed": 1}


class TestRetailerRepo:
    @pytest.mark.asyncio
    async def test_load_patterns(self, session):
        session.add(make_retailer("Amazon", ["Amazon.com", " amazon.co.uk ", ""]))
        await session.commit()

        patterns = await RetailerRepo(session).load_patterns()
        assert len(patterns) == 1
        assert patterns[0].name == "Amazon"
        assert patterns[0].domains == frozenset({"amazon.com", "amazon.co.uk"})


class TestShipmentRepo:
    @pytest.mark.asyncio
    async def test_get_by_tracking(self, session):
        shipment = make_shipment(tracking_number="1Z999AA10123456784")
        session.add(make_order(shipments=[shipment]))
        await session.commit()

        repo = ShipmentRepo(session)
        assert (await repo.get_by_tracking(" 1Z999AA10123456784 ")).id == shipment.id
        assert await repo.get_by_tracking("1Z000") is None
