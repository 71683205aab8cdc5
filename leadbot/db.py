import asyncpg
from .config import settings

_pool: asyncpg.Pool | None = None

# Conversation state rows for the postgres store backend.
# Expired rows are ignored on read and overwritten on the next write.
LEAD_STATE_DDL = """
CREATE SCHEMA IF NOT EXISTS bot;

CREATE TABLE IF NOT EXISTS bot.lead_state (
    state_key   TEXT PRIMARY KEY,
    state       JSONB NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_lead_state_expires_at
    ON bot.lead_state (expires_at);
"""

async def init_db_pool(dsn: str | None = None) -> asyncpg.Pool:
    global _pool
    if _pool is None:
        dsn = dsn or settings.database_url
        if not dsn:
            raise RuntimeError("DATABASE_URL is not set")
        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=10,
            command_timeout=10,
        )
    return _pool

async def close_db_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None

async def ensure_lead_state_table(conn: asyncpg.Connection) -> None:
    await conn.execute(LEAD_STATE_DDL)
