"""
Conversation store migration for the postgres backend. Run with the app's DATABASE_URL.

Usage:
  python scripts/migrate_store.py

Adds:
  - bot schema
  - bot.lead_state table (state_key, state, expires_at, updated_at)
  - expiry index, used by --purge
Pass --purge to also delete rows whose TTL has passed.
"""
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

import asyncpg

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
from leadbot.db import ensure_lead_state_table  # noqa: E402

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    print("ERROR: DATABASE_URL not set")
    sys.exit(1)


async def migrate(purge: bool = False):
    conn = await asyncpg.connect(DATABASE_URL)
    try:
        print("Running conversation store migration...")

        await ensure_lead_state_table(conn)
        print("OK bot.lead_state")

        if purge:
            status = await conn.execute("DELETE FROM bot.lead_state WHERE expires_at <= now()")
            print(f"OK purged expired rows ({status})")

        print("\nMigration complete.")

    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(migrate(purge="--purge" in sys.argv[1:]))
