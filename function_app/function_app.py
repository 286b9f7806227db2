"""Azure Function: queue trigger for ingested email messages."""
import logging

import azure.functions as func

from orderpulse.config import Settings
from orderpulse.storage.database import init_db
from orderpulse.utils.logging import setup_logging
from orderpulse.workers.queue_processor import process_queue_message

app = func.FunctionApp()

settings = Settings()
setup_logging(settings.log_level)
init_db(settings.database_url.get_secret_value())


@app.queue_trigger(arg_name="msg", queue_name="email-messages", connection="AzureWebJobsStorage")
async def process_email_message(msg: func.QueueMessage):
    """Triggered for each stored email message id put on the queue.

    Exceptions propagate so the queue redelivers the message; the host moves
    it to the poison queue after its own dequeue limit.
    """
    raw_id = msg.get_body().decode("utf-8")
    logging.info(f"Queue trigger fired: {raw_id}, dequeue count: {msg.dequeue_count}")
    result = await process_queue_message(raw_id, settings)
    logging.info(f"Message processed: {result}")
