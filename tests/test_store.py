"""Tests for conversation store backends and typed state access."""

import dataclasses

import pytest
from conftest import CONTACT, BrokenStore

from leadbot.bot.state import ConversationState, default_state
from leadbot.bot.store import (
    MemoryConversationStore,
    PostgresConversationStore,
    RedisConversationStore,
    StateRepository,
    StoreError,
    build_store,
    normalize_redis_url,
)
from leadbot.config import settings


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestMemoryStore:
    async def test_get_set(self):
        store = MemoryConversationStore()
        assert await store.get("k") is None
        await store.set("k", "v", 60)
        assert await store.get("k") == "v"

    async def test_ttl_expiry(self):
        clock = FakeClock()
        store = MemoryConversationStore(clock=clock)
        await store.set("k", "v", 60)
        clock.now += 59
        assert await store.get("k") == "v"
        clock.now += 2
        assert await store.get("k") is None

    async def test_write_evicts_expired_entries(self):
        clock = FakeClock()
        store = MemoryConversationStore(clock=clock)
        await store.set("zia:gone", "old", 60)
        await store.set("zia:stays", "fresh", 600)
        clock.now += 61
        await store.set("zia:new", "v", 60)
        assert set(store._data) == {"zia:stays", "zia:new"}


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.data = {}
        self.ex = {}
        self.closed = False

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.data[key] = value
        self.ex[key] = ex

    async def aclose(self):
        self.closed = True


class TestRedisStore:
    async def test_set_uses_expiry(self):
        client = FakeRedis()
        store = RedisConversationStore(client)
        await store.set("zia:1", "{}", 604800)
        assert client.ex["zia:1"] == 604800
        assert await store.get("zia:1") == "{}"
        await store.close()
        assert client.closed

    async def test_errors_wrapped(self):
        store = RedisConversationStore(FakeRedis(fail=True))
        with pytest.raises(StoreError):
            await store.get("k")
        with pytest.raises(StoreError):
            await store.set("k", "v", 10)

    def test_normalize_url(self):
        assert normalize_redis_url("redis://u:p@host:6379") == "rediss://u:p@host:6379"
        assert normalize_redis_url("redis://host", force_tls=False) == "redis://host"
        assert normalize_redis_url("rediss://host") == "rediss://host"
        assert normalize_redis_url("  ") == ""


class FakeConn:
    def __init__(self, rows):
        self.rows = rows
        self.executed = []

    async def fetchval(self, sql, key):
        return self.rows.get(key)

    async def execute(self, sql, key, value, expires_at):
        self.executed.append((key, value, expires_at))
        self.rows[key] = value


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self):
        self.conn = FakeConn({})

    def acquire(self):
        return FakeAcquire(self.conn)


class TestPostgresStore:
    async def test_upsert_and_read(self):
        pool = FakePool()
        store = PostgresConversationStore(pool)
        await store.set("zia:1", '{"v": 1}', 3600)
        assert await store.get("zia:1") == '{"v": 1}'
        key, value, expires_at = pool.conn.executed[0]
        assert key == "zia:1"
        assert expires_at.tzinfo is not None

    async def test_errors_wrapped(self):
        class ExplodingPool:
            def acquire(self):
                raise OSError("no route to host")

        store = PostgresConversationStore(ExplodingPool())
        with pytest.raises(StoreError):
            await store.get("k")


class TestBuildStore:
    async def test_memory_backend(self):
        cfg = dataclasses.replace(settings, store_backend="memory")
        assert isinstance(await build_store(cfg), MemoryConversationStore)

    async def test_redis_without_url_falls_back(self):
        cfg = dataclasses.replace(settings, store_backend="redis", redis_url="")
        assert isinstance(await build_store(cfg), MemoryConversationStore)

    async def test_redis_with_url(self):
        cfg = dataclasses.replace(settings, store_backend="redis", redis_url="redis://localhost:6379/0")
        store = await build_store(cfg)
        assert isinstance(store, RedisConversationStore)
        await store.close()

    async def test_postgres_without_url_falls_back(self):
        cfg = dataclasses.replace(settings, store_backend="postgres", database_url="")
        assert isinstance(await build_store(cfg), MemoryConversationStore)

    async def test_unknown_backend(self):
        cfg = dataclasses.replace(settings, store_backend="dynamo")
        assert isinstance(await build_store(cfg), MemoryConversationStore)


class TestRepository:
    async def test_key_prefix_and_roundtrip(self, schema):
        store = MemoryConversationStore()
        repo = StateRepository(store, schema, key_prefix="zia:", ttl_seconds=60)
        state = ConversationState(slots={"sector": "spa", "service": "", "volume": ""})
        await repo.save(CONTACT, state)
        assert await store.get(f"zia:{CONTACT}") is not None
        assert await repo.load(CONTACT) == state

    async def test_absent_gives_default(self, repository, schema):
        assert await repository.load("nobody") == default_state(schema)

    async def test_store_down_gives_default(self, schema):
        repo = StateRepository(BrokenStore(), schema)
        assert await repo.load(CONTACT) == default_state(schema)

    async def test_save_raises_store_error(self, schema):
        repo = StateRepository(BrokenStore(), schema)
        with pytest.raises(StoreError):
            await repo.save(CONTACT, default_state(schema))


async def test_ensure_lead_state_table():
    from leadbot.db import LEAD_STATE_DDL, ensure_lead_state_table

    class DDLConn:
        def __init__(self):
            self.sql = []

        async def execute(self, sql):
            self.sql.append(sql)

    conn = DDLConn()
    await ensure_lead_state_table(conn)
    assert conn.sql == [LEAD_STATE_DDL]
    assert "bot.lead_state" in LEAD_STATE_DDL


async def test_build_store_postgres(monkeypatch):
    import leadbot.db

    pool = FakePool()
    seen = {}

    async def fake_init(dsn=None):
        seen["dsn"] = dsn
        return pool

    monkeypatch.setattr(leadbot.db, "init_db_pool", fake_init)
    cfg = dataclasses.replace(settings, store_backend="postgres", database_url="postgresql://db/leads")
    store = await build_store(cfg)

    assert isinstance(store, PostgresConversationStore)
    assert seen["dsn"] == "postgresql://db/leads"


async def test_db_pool_is_created_once_and_closed(monkeypatch):
    import leadbot.db

    created = []

    class Pool:
        closed = False

        async def close(self):
            self.closed = True

    async def fake_create_pool(**kwargs):
        created.append(kwargs)
        return Pool()

    monkeypatch.setattr(leadbot.db.asyncpg, "create_pool", fake_create_pool)
    monkeypatch.setattr(leadbot.db, "_pool", None)

    pool = await leadbot.db.init_db_pool("postgresql://db/leads")
    assert await leadbot.db.init_db_pool("postgresql://db/leads") is pool
    assert len(created) == 1
    assert created[0]["dsn"] == "postgresql://db/leads"
    assert created[0]["command_timeout"] == 10

    await leadbot.db.close_db_pool()
    assert pool.closed
    assert leadbot.db._pool is None
