"""Queue worker: one queue message → one pipeline run."""
from __future__ import annotations

import asyncio
from uuid import UUID

import structlog

from ..config import Settings
from ..models.enums import ProcessingStatus
from ..pipeline import EmailProcessingPipeline
from ..storage.database import AsyncSessionLocal, init_db
from ..storage.repositories import EmailMessageRepo
from ..utils.logging import setup_logging

logger = structlog.get_logger(__name__)


async def process_queue_message(
    raw_message_id: str,
    settings: Settings,
    pipeline: EmailProcessingPipeline | None = None,
) -> dict:
    """Process a single queue message carrying an email message id.

    Steps:
    1. Validate the id (malformed ids are dropped, not retried)
    2. Skip ids with no stored message
    3. Dead-letter messages that reached the delivery-attempt limit
    4. Run the pipeline; exceptions propagate so the queue redelivers
    """
    try:
        message_id = UUID(str(raw_message_id).strip())
    except ValueError:
        logger.error("queue_message_invalid_id", raw_message_id=raw_message_id)
        return {"status": "invalid", "message_id": raw_message_id}

    async with AsyncSessionLocal() as session:
        message = await EmailMessageRepo(session).get_by_id(message_id)
        if message is None:
            logger.warning("queue_message_not_found", message_id=str(message_id))
            return {"status": "not_found", "message_id": str(message_id)}
        if (
            message.processing_status == ProcessingStatus.FAILED
            and message.retry_count >= settings.max_delivery_attempts
        ):
            logger.error(
                "queue_message_dead_lettered",
                message_id=str(message_id),
                retry_count=message.retry_count,
                error=message.error_message,
            )
            return {"status": "dead_lettered", "message_id": str(message_id)}

    pipeline = pipeline or EmailProcessingPipeline(settings)
    status = await pipeline.process_message(message_id)
    logger.info("queue_message_processed", message_id=str(message_id), status=str(status))
    return {"status": str(status), "message_id": str(message_id)}


def main():
    """Entry point for worker process."""
    import sys
    settings = Settings()
    setup_logging(settings.log_level)
    init_db(settings.database_url.get_secret_value())
    logger.info("worker_started")

    # The queue trigger host invokes process_queue_message directly; this
    # entry point handles one id passed on the command line.
    if len(sys.argv) > 1:
        asyncio.run(process_queue_message(sys.argv[1], settings))
    else:
        logger.info("worker_idle", message="No message id specified.")


if __name__ == "__main__":
    main()
