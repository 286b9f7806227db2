#!/usr/bin/env python3
"""Import retailer sender domains from a JSON file.

Expected format:
    [{"name": "Amazon", "sender_domains": ["amazon.com", "amazon.co.uk"]}, ...]
"""
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

from orderpulse.config import Settings
from orderpulse.storage.database import close_db, create_tables, init_db
from orderpulse.storage.models import Retailer
from orderpulse.storage.repositories import RetailerRepo


async def main(json_path: str) -> None:
    """Insert retailers not already present (matched by normalized name)."""
    path = Path(json_path)
    if not path.exists():
        print(f"Error: File not found: {json_path}")
        sys.exit(1)

    with open(path) as f:
        data = json.load(f)

    settings = Settings()
    session_factory = init_db(settings.database_url.get_secret_value())
    await create_tables()

    async with session_factory() as session:
        repo = RetailerRepo(session)
        known = {r.normalized_name for r in await repo.list_all()}
        added = 0
        for entry in data:
            normalized = entry["name"].strip().lower()
            if normalized in known:
                continue
            await repo.create(Retailer(
                name=entry["name"].strip(),
                normalized_name=normalized,
                sender_domains=[d.strip().lower() for d in entry.get("sender_domains", [])],
            ))
            known.add(normalized)
            added += 1
        await session.commit()

    await close_db()
    print(f"Imported {added} retailer(s), skipped {len(data) - added}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/import_retailers.py <path-to-json>")
        sys.exit(1)

    asyncio.run(main(sys.argv[1]))
