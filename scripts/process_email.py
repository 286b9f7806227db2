#!/usr/bin/env python3
"""Push a saved .eml file through the aggregation pipeline."""
import asyncio
import sys
from email import policy
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from pathlib import Path

# Load .env file
from dotenv import load_dotenv
load_dotenv()

from orderpulse.config import Settings
from orderpulse.mail.forwarded import extract_original_sender, is_forwarded_subject
from orderpulse.pipeline import EmailProcessingPipeline
from orderpulse.storage.database import create_tables, init_db
from orderpulse.storage.models import EmailMessage
from orderpulse.storage.repositories import EmailMessageRepo, OrderRepo
from orderpulse.utils.dates import utcnow
from orderpulse.utils.logging import setup_logging


def read_eml(path: Path) -> EmailMessage:
    with open(path, "rb") as f:
        parsed = BytesParser(policy=policy.default).parse(f)

    part = parsed.get_body(preferencelist=("plain", "html"))
    body = part.get_content() if part is not None else ""
    subject = parsed.get("Subject", "") or ""
    received = parsedate_to_datetime(parsed["Date"]).replace(tzinfo=None) if parsed["Date"] else utcnow()

    return EmailMessage(
        from_address=parseaddr(parsed.get("From", ""))[1].lower(),
        original_from_address=extract_original_sender(body) if is_forwarded_subject(subject) else None,
        subject=subject,
        received_at=received,
        body_preview=body,
    )


async def main(eml_path: str) -> None:
    """Store one message, process it and print the resulting orders."""
    path = Path(eml_path)
    if not path.exists():
        print(f"Error: File not found: {eml_path}")
        sys.exit(1)

    settings = Settings()
    setup_logging(settings.log_level, json_output=False)
    session_factory = init_db(settings.database_url.get_secret_value())
    await create_tables()

    async with session_factory() as session:
        message = await EmailMessageRepo(session).create(read_eml(path))
        await session.commit()
        message_id = message.id

    print(f"Processing: {path.name} ({message_id})")
    print("-" * 50)

    pipeline = EmailProcessingPipeline(settings, session_factory=session_factory)
    status = await pipeline.process_message(message_id)
    print(f"Status: {status}")

    async with session_factory() as session:
        message = await EmailMessageRepo(session).get_by_id(message_id)
        print(f"Classification: {message.classification_type} ({message.classification_confidence})")
        if message.error_message:
            print(f"Review reason: {message.error_message}")

        orders = OrderRepo(session)
        for order_id in {e.order_id for e in await _events_for(session, message_id)}:
            order = await orders.get_by_id(order_id)
            inferred = " (inferred)" if order.is_inferred else ""
            print(f"\nOrder #{order.external_order_number}{inferred}: {order.status}")
            for line in order.lines:
                print(f"  {line.line_number}. {line.product_name} x{line.quantity} [{line.status}]")
            for shipment in order.shipments:
                print(f"  Shipment {shipment.tracking_number or '-'}: {shipment.status}")


async def _events_for(session, message_id):
    from sqlalchemy import select
    from orderpulse.storage.models import OrderEvent
    result = await session.execute(select(OrderEvent).where(OrderEvent.email_message_id == message_id))
    return list(result.scalars().all())


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/process_email.py <path-to-eml>")
        sys.exit(1)

    asyncio.run(main(sys.argv[1]))
