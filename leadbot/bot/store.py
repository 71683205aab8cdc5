"""
Conversation store backends.

Every backend is a plain key-value store with TTL:
    get(key) -> serialized state | None
    set(key, serialized state, ttl_seconds)
Nothing is locked across a turn; a turn is read-modify-write.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import asyncpg
import redis.asyncio as redis_async

from leadbot.bot.slots import SlotSchema
from leadbot.bot.state import ConversationState, default_state, loads_state
from leadbot.config import Settings

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the backing store cannot be read or written."""


class ConversationStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-process store (dev, tests, and the no-backend fallback)
# ---------------------------------------------------------------------------

class MemoryConversationStore:
    def __init__(self, clock=time.monotonic) -> None:
        self._data: dict[str, tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        self._prune(now)
        self._data[key] = (value, now + ttl_seconds)

    def _prune(self, now: float) -> None:
        # Contacts that never come back are only evicted here.
        expired = [k for k, (_, expires_at) in self._data.items() if expires_at <= now]
        for k in expired:
            del self._data[k]

    async def close(self) -> None:
        self._data.clear()


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

def normalize_redis_url(url: str, force_tls: bool = True) -> str:
    """Managed Redis (Upstash) wants TLS; upgrade redis:// to rediss://."""
    u = (url or "").strip()
    if not u:
        return ""
    if force_tls and u.startswith("redis://"):
        return "rediss://" + u[len("redis://"):]
    return u


class RedisConversationStore:
    def __init__(self, client: "redis_async.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisConversationStore":
        client = redis_async.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except Exception as e:
            raise StoreError(f"redis get failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except Exception as e:
            raise StoreError(f"redis set failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

GET_STATE_SQL = """
SELECT state::text
FROM bot.lead_state
WHERE state_key = $1
  AND expires_at > now()
LIMIT 1;
"""

UPSERT_STATE_SQL = """
INSERT INTO bot.lead_state (state_key, state, expires_at, updated_at)
VALUES ($1::text, $2::jsonb, $3::timestamptz, now())
ON CONFLICT (state_key)
DO UPDATE SET
  state = EXCLUDED.state,
  expires_at = EXCLUDED.expires_at,
  updated_at = now();
"""


class PostgresConversationStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self._pool.acquire() as conn:
                return await conn.fetchval(GET_STATE_SQL, key)
        except Exception as e:
            raise StoreError(f"postgres get failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(UPSERT_STATE_SQL, key, value, expires_at)
        except Exception as e:
            raise StoreError(f"postgres set failed: {e}") from e

    async def close(self) -> None:
        from leadbot.db import close_db_pool

        await close_db_pool()


async def build_store(settings: Settings) -> ConversationStore:
    """Pick the backend from STORE_BACKEND; fall back to memory when unconfigured."""
    backend = (settings.store_backend or "memory").lower()

    if backend == "redis":
        url = normalize_redis_url(settings.redis_url, settings.redis_force_tls)
        if url:
            return RedisConversationStore.from_url(url)
        logger.warning("store: REDIS_URL is not set, using in-memory store")

    elif backend == "postgres":
        from leadbot.db import init_db_pool

        if settings.database_url:
            pool = await init_db_pool(settings.database_url)
            return PostgresConversationStore(pool)
        logger.warning("store: DATABASE_URL is not set, using in-memory store")

    elif backend != "memory":
        logger.warning("store: unknown STORE_BACKEND=%s, using in-memory store", backend)

    return MemoryConversationStore()


# ---------------------------------------------------------------------------
# Typed access
# ---------------------------------------------------------------------------

class StateRepository:
    """Loads and saves ConversationState for a contact under the key prefix."""

    def __init__(
        self,
        store: ConversationStore,
        schema: SlotSchema,
        *,
        key_prefix: str = "zia:",
        ttl_seconds: int = 60 * 60 * 24 * 7,
    ) -> None:
        self.store = store
        self.schema = schema
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def key(self, contact_id: str) -> str:
        return f"{self.key_prefix}{contact_id}"

    async def load(self, contact_id: str) -> ConversationState:
        """Stored state, or a fresh default when absent or the store is down."""
        try:
            raw = await self.store.get(self.key(contact_id))
        except StoreError as e:
            logger.error(json.dumps({
                "event": "state_load_failed",
                "contact_id": contact_id,
                "error": str(e),
            }))
            return default_state(self.schema)
        return loads_state(raw, self.schema)

    async def save(self, contact_id: str, state: ConversationState) -> None:
        """Raises StoreError; callers decide whether that is fatal."""
        await self.store.set(self.key(contact_id), state.dumps(self.schema), self.ttl_seconds)
