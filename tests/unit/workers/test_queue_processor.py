"""Test the queue worker entry point."""
from uuid import uuid4
import pytest
from unittest.mock import AsyncMock, MagicMock
from orderpulse.errors import CompletionError
from orderpulse.models.enums import ProcessingStatus
from orderpulse.workers.queue_processor import process_queue_message
from tests.factories import make_message


@pytest.fixture
def pipeline():
    mock = MagicMock()
    mock.process_message = AsyncMock(return_value=ProcessingStatus.PARSED)
    return mock


async def seed(session_factory, **kwargs):
    message = make_message(**kwargs)
    async with session_factory() as session:
        session.add(message)
        await session.commit()
    return message


class TestProcessQueueMessage:
    @pytest.mark.asyncio
    async def test_processes_message(self, mock_settings, session_factory, pipeline):
        message = await seed(session_factory)

        result = await process_queue_message(f" {message.id} ", mock_settings, pipeline)

        assert result == {"status": "parsed", "message_id": str(message.id)}
        pipeline.process_message.assert_awaited_once_with(message.id)

    @pytest.mark.asyncio
    async def test_invalid_id_dropped(self, mock_settings, session_factory, pipeline):
        result = await process_queue_message("not-a-uuid", mock_settings, pipeline)
        assert result["status"] == "invalid"
        pipeline.process_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_id_skipped(self, mock_settings, session_factory, pipeline):
        result = await process_queue_message(str(uuid4()), mock_settings, pipeline)
        assert result["status"] == "not_found"
        pipeline.process_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_dead_lettered_after_attempt_limit(self, mock_settings, session_factory, pipeline):
        message = await seed(session_factory, status=ProcessingStatus.FAILED, retry_count=5, error_message="boom")

        result = await process_queue_message(str(message.id), mock_settings, pipeline)

        assert result["status"] == "dead_lettered"
        pipeline.process_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_below_limit_is_retried(self, mock_settings, session_factory, pipeline):
        message = await seed(session_factory, status=ProcessingStatus.FAILED, retry_count=2)

        await process_queue_message(str(message.id), mock_settings, pipeline)

        pipeline.process_message.assert_awaited_once_with(message.id)

    @pytest.mark.asyncio
    async def test_pipeline_errors_propagate(self, mock_settings, session_factory, pipeline):
        message = await seed(session_factory)
        pipeline.process_message.side_effect = CompletionError("down", attempts=3, last_status=503)

        with pytest.raises(CompletionError):
            await process_queue_message(str(message.id), mock_settings, pipeline)
