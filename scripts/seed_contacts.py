#!/usr/bin/env python3
"""CLI script to seed the local contact store with sample contacts.

Usage:
    python scripts/seed_contacts.py
    python scripts/seed_contacts.py --reset

Connects directly to the database using DATABASE_URL from environment or .env file.
Expects the schema to exist already (``alembic upgrade head``).
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.crm_bridge
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

SAMPLE_CONTACTS = [
    {
        "email": "jklopp@liverpool.com",
        "first_name": "Jurgen",
        "last_name": "Klopp",
        "hs_object_id": "202751",
    },
    {"email": "pep@mancity.com", "first_name": "Pep", "last_name": "Guardiola"},
    {"email": "mikel@arsenal.com", "first_name": "Mikel", "last_name": "Arteta"},
]


async def seed(reset: bool) -> None:
    from sqlalchemy import delete, func
    from sqlalchemy.dialects.postgresql import insert as pg_insert

    from src.crm_bridge.contacts.models import ContactModel, SyncJobModel
    from src.crm_bridge.core.database import get_engine

    engine = get_engine()
    async with engine.begin() as conn:
        if reset:
            await conn.execute(delete(SyncJobModel))
            await conn.execute(delete(ContactModel))
            print("Cleared contacts and sync_jobs")

        stmt = pg_insert(ContactModel).values(SAMPLE_CONTACTS).on_conflict_do_nothing(
            index_elements=[func.lower(ContactModel.email)]
        )
        result = await conn.execute(stmt)
        print(f"Inserted {result.rowcount} of {len(SAMPLE_CONTACTS)} sample contacts")

    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed sample contacts")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete existing contacts and sync jobs first",
    )
    args = parser.parse_args()
    asyncio.run(seed(reset=args.reset))


if __name__ == "__main__":
    main()
