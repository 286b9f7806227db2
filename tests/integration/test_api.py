"""Integration tests for FastAPI endpoints."""
import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from orderpulse.api.app import create_app
from orderpulse.errors import CompletionError
from orderpulse.models.enums import OrderStatus, ProcessingStatus, ReturnStatus
from orderpulse.storage.database import create_tables, get_session
from orderpulse.storage.models import EmailMessage, OrderEvent, Refund, ReturnLine
from tests.factories import (
    RECEIVED_AT,
    make_delivery,
    make_line,
    make_message,
    make_order,
    make_retailer,
    make_return,
    make_shipment,
)


def run_db(db_url, work):
    """Run *work(session)* on its own engine and event loop."""
    async def _run():
        engine = create_async_engine(db_url, poolclass=NullPool)
        try:
            async with async_sessionmaker(engine, expire_on_commit=False)() as session:
                return await work(session)
        finally:
            await engine.dispose()
    return asyncio.run(_run())


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"

    async def _create():
        engine = create_async_engine(url, poolclass=NullPool)
        await create_tables(engine)
        await engine.dispose()

    asyncio.run(_create())
    return url


@pytest.fixture
def messages(db_url):
    seeded = {
        "review": make_message(
            status=ProcessingStatus.MANUAL_REVIEW,
            classification_type="shipment_confirmation",
            confidence=0.95,
            error_message="Low confidence: 0.65",
            received_at=RECEIVED_AT + timedelta(hours=1),
        ),
        "failed": make_message(status=ProcessingStatus.FAILED, retry_count=1, error_message="CompletionError: down"),
        "parsed": make_message(status=ProcessingStatus.PARSED),
    }

    async def _seed(session):
        session.add_all(seeded.values())
        await session.commit()

    run_db(db_url, _seed)
    return seeded


@pytest.fixture
def pipeline():
    mock = MagicMock()
    mock.load_body = AsyncMock(return_value="Your package is on its way.")
    mock.parse_message = AsyncMock(return_value=[uuid4()])
    mock.process_message = AsyncMock(return_value=ProcessingStatus.PARSED)
    return mock


def build_client(settings, db_url, pipeline):
    app = create_app(settings, pipeline=pipeline)
    engine = create_async_engine(db_url, poolclass=NullPool)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def override_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def client(mock_settings, db_url, messages, pipeline):
    return build_client(mock_settings, db_url, pipeline)


def stored(db_url, message_id) -> EmailMessage:
    async def _get(session):
        return await session.get(EmailMessage, message_id)
    return run_db(db_url, _get)


@pytest.mark.integration
class TestHealthEndpoint:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "orderpulse-api"}

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["database"] == "ok"

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert client.get("/health").headers["X-Request-ID"]


@pytest.mark.integration
class TestReviewQueue:
    def test_queue_oldest_first(self, client, messages):
        response = client.get("/review/queue")
        assert response.status_code == 200
        ids = [item["message_id"] for item in response.json()["items"]]
        assert ids == [str(messages["failed"].id), str(messages["review"].id)]

    def test_queue_paging(self, client, messages):
        response = client.get("/review/queue", params={"offset": 1, "limit": 1})
        items = response.json()["items"]
        assert [item["message_id"] for item in items] == [str(messages["review"].id)]

    def test_stats(self, client):
        response = client.get("/review/queue/stats")
        assert response.json() == {"counts_by_status": {"manual_review": 1, "failed": 1, "parsed": 1}}

    def test_detail_includes_body(self, client, messages, pipeline):
        response = client.get(f"/review/{messages['review'].id}")
        assert response.status_code == 200
        data = response.json()
        assert data["body"] == "Your package is on its way."
        assert data["error_message"] == "Low confidence: 0.65"
        pipeline.load_body.assert_awaited_once()

    def test_detail_not_found(self, client):
        assert client.get(f"/review/{uuid4()}").status_code == 404

    def test_invalid_id(self, client):
        assert client.get("/review/not-a-uuid").status_code == 422


@pytest.mark.integration
class TestReviewActions:
    def test_approve(self, client, messages, pipeline):
        message_id = messages["review"].id
        response = client.post(f"/review/{message_id}/approve")
        assert response.status_code == 200
        assert len(response.json()["order_ids"]) == 1
        pipeline.parse_message.assert_awaited_once_with(message_id, accept_low_confidence=True)

    def test_approve_pipeline_failure(self, client, messages, pipeline):
        pipeline.parse_message.side_effect = CompletionError("down", attempts=3, last_status=503)
        response = client.post(f"/review/{messages['review'].id}/approve")
        assert response.status_code == 502

    def test_reprocess_resets_and_runs(self, client, db_url, messages, pipeline):
        message_id = messages["failed"].id
        response = client.post(f"/review/{message_id}/reprocess")
        assert response.status_code == 200
        assert response.json() == {"status": "parsed"}
        pipeline.process_message.assert_awaited_once_with(message_id)

        message = stored(db_url, message_id)
        assert message.processing_status == ProcessingStatus.PENDING
        assert message.error_message is None

    def test_dismiss(self, client, db_url, messages):
        message_id = messages["review"].id
        response = client.post(f"/review/{message_id}/dismiss")
        assert response.status_code == 200
        assert response.json() == {"status": "dismissed"}
        message = stored(db_url, message_id)
        assert message.processing_status == ProcessingStatus.DISMISSED
        assert message.processed_at is not None

    @pytest.mark.parametrize("action", ["approve", "reprocess", "dismiss"])
    def test_parsed_message_conflict(self, client, messages, action):
        response = client.post(f"/review/{messages['parsed'].id}/{action}")
        assert response.status_code == 409

    def test_unknown_message(self, client):
        assert client.post(f"/review/{uuid4()}/dismiss").status_code == 404

    def test_pipeline_not_configured(self, mock_settings, db_url, messages):
        client = build_client(mock_settings, db_url, None)
        assert client.get(f"/review/{messages['review'].id}").status_code == 503


@pytest.fixture
def orders(db_url):
    retailer = make_retailer()
    widget = make_line("Blue Widget", quantity=2)
    gadget = make_line("Red Gadget", line_number=2)
    cable = make_line("USB Cable", line_number=3)
    lamp = make_line("Desk Lamp", line_number=4)
    delivered = make_order(
        lines=[widget, gadget, cable, lamp],
        shipments=[make_shipment(lines=[widget], delivery=make_delivery())],
        returns=[make_return(ReturnStatus.INITIATED)],
        status=OrderStatus.DELIVERED,
    )
    delivered.retailer_id = retailer.id
    delivered.total_amount = Decimal("42.50")
    delivered.created_at = RECEIVED_AT
    delivered.returns[0].lines = [ReturnLine(order_line_id=gadget.id, quantity=1, return_reason="Damaged")]
    delivered.refunds = [Refund(refund_amount=Decimal("9.99"), currency="USD", return_id=delivered.returns[0].id)]
    delivered.events = [
        OrderEvent(event_type="order_placed", event_date=RECEIVED_AT, summary="Order placed"),
        OrderEvent(
            event_type="delivered",
            event_date=RECEIVED_AT + timedelta(days=3),
            summary="Delivered",
            entity_type="delivery",
            entity_id=delivered.shipments[0].delivery.id,
        ),
        OrderEvent(event_type="shipped", event_date=RECEIVED_AT + timedelta(days=1), summary="Shipped"),
    ]
    placed = make_order(external_order_number="XYZ-001")
    placed.created_at = RECEIVED_AT + timedelta(days=5)

    async def _seed(session):
        session.add_all([retailer, delivered, placed])
        await session.commit()

    run_db(db_url, _seed)
    return {"delivered": delivered, "placed": placed, "gadget": gadget}


@pytest.mark.integration
class TestOrders:
    def test_list_newest_first(self, client, orders):
        response = client.get("/orders")
        assert response.status_code == 200
        items = response.json()["items"]
        assert [item["id"] for item in items] == [str(orders["placed"].id), str(orders["delivered"].id)]

    def test_list_summary(self, client, orders):
        items = client.get("/orders").json()["items"]
        summary = items[1]
        assert summary["retailer"] == "Amazon"
        assert summary["item_count"] == 5
        assert summary["item_summary"] == "Blue Widget, Red Gadget, USB Cable"
        assert summary["total_amount"] == "42.50"
        assert summary["latest_event"] == "Delivered"
        assert items[0]["retailer"] is None
        assert items[0]["latest_event"] is None

    def test_list_status_filter(self, client, orders):
        response = client.get("/orders", params={"status": "delivered"})
        assert [item["id"] for item in response.json()["items"]] == [str(orders["delivered"].id)]

    def test_list_unknown_status(self, client):
        assert client.get("/orders", params={"status": "teleported"}).status_code == 422

    def test_list_paging(self, client, orders):
        response = client.get("/orders", params={"offset": 1, "limit": 1})
        data = response.json()
        assert [item["id"] for item in data["items"]] == [str(orders["delivered"].id)]
        assert (data["offset"], data["limit"]) == (1, 1)

    def test_detail(self, client, orders):
        order = orders["delivered"]
        response = client.get(f"/orders/{order.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["external_order_number"] == "112-9387462-1029384"
        assert data["retailer"] == "Amazon"
        assert [line["product_name"] for line in data["lines"]] == [
            "Blue Widget", "Red Gadget", "USB Cable", "Desk Lamp",
        ]

        shipment = data["shipments"][0]
        assert shipment["lines"] == [
            {"order_line_id": str(order.lines[0].id), "product_name": "Blue Widget", "quantity": 2},
        ]
        assert shipment["delivery"]["status"] == "delivered"

        return_ = data["returns"][0]
        assert return_["status"] == "initiated"
        assert return_["lines"][0]["product_name"] == "Red Gadget"
        assert return_["lines"][0]["return_reason"] == "Damaged"

        assert data["refunds"][0]["refund_amount"] == "9.99"
        assert data["refunds"][0]["return_id"] == str(order.returns[0].id)

    def test_detail_without_children(self, client, orders):
        data = client.get(f"/orders/{orders['placed'].id}").json()
        assert data["status"] == "placed"
        assert (data["lines"], data["shipments"], data["returns"], data["refunds"]) == ([], [], [], [])

    def test_timeline_most_recent_first(self, client, orders):
        order = orders["delivered"]
        response = client.get(f"/orders/{order.id}/timeline")
        assert response.status_code == 200
        events = response.json()["events"]
        assert [e["event_type"] for e in events] == ["delivered", "shipped", "order_placed"]
        assert events[0]["entity_type"] == "delivery"
        assert events[0]["entity_id"] == str(order.shipments[0].delivery.id)
        assert events[1]["entity_id"] is None

    def test_not_found(self, client):
        assert client.get(f"/orders/{uuid4()}").status_code == 404
        assert client.get(f"/orders/{uuid4()}/timeline").status_code == 404

    def test_invalid_id(self, client):
        assert client.get("/orders/not-a-uuid").status_code == 422
