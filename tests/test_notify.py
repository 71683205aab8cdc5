"""Tests for the one-time admin notification."""

from datetime import datetime

from conftest import CONTACT, BrokenStore, FakeNotifier, seed_state

from leadbot.bot.notify import NotificationGuard, build_lead_summary, is_lead_complete
from leadbot.bot.state import ConversationState, loads_state
from leadbot.bot.store import StateRepository


def _complete(**kwargs):
    return ConversationState(
        slots={"sector": "dental clinic", "service": "booking", "volume": "15"},
        closed=True,
        closing_sent=True,
        **kwargs,
    )


class TestCompletion:
    def test_complete(self, schema):
        assert is_lead_complete(_complete(), schema)

    def test_needs_closing_sent(self, schema):
        state = _complete()
        state.closing_sent = False
        assert not is_lead_complete(state, schema)

    def test_needs_all_slots(self, schema):
        state = _complete()
        state.slots["volume"] = ""
        assert not is_lead_complete(state, schema)


def test_summary(schema):
    text = build_lead_summary(
        "+1 (809) 555-1234",
        _complete(),
        schema,
        bot_name="Zia Bot",
        now=datetime(2026, 3, 1, 9, 30),
    )
    assert text.splitlines() == [
        "🆕 New lead (Zia Bot)",
        "📌 Business: dental clinic",
        "📌 Automate first: booking",
        "📌 Appointments/week: 15",
        "👤 WhatsApp: 18095551234",
        "🔗 https://wa.me/18095551234",
        "🕒 2026-03-01 09:30",
    ]


def test_summary_without_digits(schema):
    state = _complete()
    state.slots["service"] = ""
    text = build_lead_summary("subscriber-abc", state, schema)
    assert "📌 Automate first: -" in text
    assert "👤 WhatsApp: subscriber-abc" in text
    assert "wa.me" not in text


class TestGuard:
    async def test_notifies_once(self, repository, notifier):
        guard = NotificationGuard(repository, notifier, target_id="555")
        state = _complete()

        assert await guard.maybe_notify(CONTACT, state) is True
        assert state.notified is True
        assert len(notifier.sent) == 1
        assert notifier.sent[0][0] == "555"

        assert await guard.maybe_notify(CONTACT, state) is False
        assert len(notifier.sent) == 1

    async def test_flag_persisted_before_delivery(self, repository, store, schema):
        seen = {}

        class SpyNotifier(FakeNotifier):
            async def send(self, target_id, text):
                raw = await store.get(repository.key(CONTACT))
                seen["notified"] = loads_state(raw, schema).notified
                return await super().send(target_id, text)

        guard = NotificationGuard(repository, SpyNotifier(), target_id="555")
        await guard.maybe_notify(CONTACT, _complete())
        assert seen["notified"] is True

    async def test_delivery_failure_swallowed(self, repository, schema, store):
        failing = FakeNotifier(fail=True)
        guard = NotificationGuard(repository, failing, target_id="555")
        state = _complete()

        assert await guard.maybe_notify(CONTACT, state) is True
        assert len(failing.sent) == 1
        stored = loads_state(await store.get(repository.key(CONTACT)), schema)
        assert stored.notified is True

        # never retried
        await guard.maybe_notify(CONTACT, stored)
        assert len(failing.sent) == 1

    async def test_incomplete_lead_not_notified(self, repository, notifier, store):
        guard = NotificationGuard(repository, notifier, target_id="555")
        state = _complete()
        state.closing_sent = False
        assert await guard.maybe_notify(CONTACT, state) is False
        assert notifier.sent == []
        assert store.set_calls == 0

    async def test_unconfigured_transport_still_flips_flag(self, repository, schema, store):
        guard = NotificationGuard(repository, FakeNotifier(configured=False), target_id="555")
        state = _complete()
        assert await guard.maybe_notify(CONTACT, state) is False
        assert state.notified is True
        assert loads_state(await store.get(repository.key(CONTACT)), schema).notified is True

    async def test_missing_target_skips_delivery(self, repository, notifier):
        guard = NotificationGuard(repository, notifier, target_id="")
        assert await guard.maybe_notify(CONTACT, _complete()) is False
        assert notifier.sent == []

    async def test_store_down_skips_delivery(self, schema, notifier):
        repository = StateRepository(BrokenStore(), schema)
        guard = NotificationGuard(repository, notifier, target_id="555")
        state = _complete()
        assert await guard.maybe_notify(CONTACT, state) is False
        assert notifier.sent == []
        assert state.notified is False

    async def test_already_notified_in_store(self, repository, notifier):
        state = await seed_state(
            repository,
            slots={"sector": "spa", "service": "booking", "volume": "10"},
            closed=True,
            closing_sent=True,
            notified=True,
        )
        guard = NotificationGuard(repository, notifier, target_id="555")
        assert await guard.maybe_notify(CONTACT, state) is False
        assert notifier.sent == []
