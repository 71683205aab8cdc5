from __future__ import annotations

import json
from typing import Any, Optional

import pytest

from leadbot.bot.notify import NotificationGuard
from leadbot.bot.processor import LeadBot
from leadbot.bot.slots import SlotSchema
from leadbot.bot.state import ConversationState
from leadbot.bot.store import MemoryConversationStore, StateRepository, StoreError

CONTACT = "18095551234"


def oracle_json(reply: str, **state: Any) -> str:
    """Raw oracle output in the expected shape."""
    return json.dumps({"reply": reply, "state": state}, ensure_ascii=False)


class FakeOracle:
    """Scripted oracle. Items may be strings, None, exceptions or callables."""

    def __init__(self, responses: Optional[list] = None, repairs: Optional[list] = None) -> None:
        self.responses = list(responses or [])
        self.repairs = list(repairs or [])
        self.complete_calls: list[dict[str, Any]] = []
        self.repair_calls: list[dict[str, Any]] = []

    @staticmethod
    def _next(items: list, *args: Any) -> Optional[str]:
        item = items.pop(0) if items else None
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(*args)
        return item

    async def complete(self, system_prompt, state_snapshot, history, user_text):
        self.complete_calls.append({
            "system_prompt": system_prompt,
            "snapshot": dict(state_snapshot),
            "history": list(history),
            "user_text": user_text,
        })
        return self._next(self.responses, state_snapshot, user_text)

    async def repair(self, raw, hint):
        self.repair_calls.append({"raw": raw, "hint": hint})
        return self._next(self.repairs, raw)


class FakeNotifier:
    def __init__(self, fail: bool = False, configured: bool = True) -> None:
        self.fail = fail
        self.configured = configured
        self.sent: list[tuple[str, str]] = []

    async def send(self, target_id: str, text: str) -> dict[str, Any]:
        self.sent.append((target_id, text))
        if self.fail:
            raise RuntimeError("manychat down")
        return {"status": "success"}


class FakeTranscriber:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.calls: list[str] = []

    async def transcribe(self, url: str) -> str:
        self.calls.append(url)
        return self.text


class BrokenStore:
    """Store whose backend is unreachable."""

    def __init__(self) -> None:
        self.set_calls = 0

    async def get(self, key):
        raise StoreError("connection refused")

    async def set(self, key, value, ttl_seconds):
        self.set_calls += 1
        raise StoreError("connection refused")

    async def close(self):
        return None


class CountingStore(MemoryConversationStore):
    def __init__(self) -> None:
        super().__init__()
        self.set_calls = 0

    async def set(self, key, value, ttl_seconds):
        self.set_calls += 1
        await super().set(key, value, ttl_seconds)


@pytest.fixture
def schema() -> SlotSchema:
    return SlotSchema(order=("sector", "service", "volume"), freeform_slot="volume")


@pytest.fixture
def schema4() -> SlotSchema:
    return SlotSchema(order=("sector", "service", "volume", "objective"), freeform_slot="volume")


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def repository(store, schema) -> StateRepository:
    return StateRepository(store, schema, key_prefix="zia:", ttl_seconds=3600)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def make_bot(repository, schema, notifier):
    def _make(oracle, *, transcriber=None, guard_notifier=None, target_id="555") -> LeadBot:
        guard = NotificationGuard(
            repository,
            guard_notifier if guard_notifier is not None else notifier,
            target_id=target_id,
        )
        return LeadBot(
            schema=schema,
            repository=repository,
            oracle=oracle,
            transcriber=transcriber,
            guard=guard,
            context_turns=10,
            history_limit=12,
        )

    return _make


async def seed_state(repository: StateRepository, contact_id: str = CONTACT, **kwargs: Any) -> ConversationState:
    slots = {name: "" for name in repository.schema.order}
    slots.update(kwargs.pop("slots", {}))
    state = ConversationState(slots=slots, **kwargs)
    await repository.save(contact_id, state)
    return state
