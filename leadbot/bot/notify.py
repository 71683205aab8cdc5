"""
One-time admin notification for completed leads.

Idempotency:
- `notified = true` is persisted BEFORE the delivery attempt
- a failed delivery is logged and never retried
So a lead can lose its notification, but it is never sent twice.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Optional, Protocol
import json
import logging
import re

from leadbot.bot.slots import SlotSchema
from leadbot.bot.state import ConversationState
from leadbot.bot.store import StateRepository, StoreError

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    configured: bool

    async def send(self, target_id: str, text: str) -> Any: ...


def is_lead_complete(state: ConversationState, schema: SlotSchema) -> bool:
    return bool(state.closed and state.closing_sent and schema.all_filled(state.slots))


def _digits(value: str) -> str:
    return re.sub(r"[^\d]", "", value or "")


def build_lead_summary(
    contact_id: str,
    state: ConversationState,
    schema: SlotSchema,
    bot_name: str = "Zia Bot",
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now()
    wa_digits = _digits(contact_id)

    lines = [f"🆕 New lead ({bot_name})"]
    for name in schema.order:
        value = (state.slots.get(name) or "").strip() or "-"
        lines.append(f"📌 {schema.spec(name).label}: {value}")
    lines.append(f"👤 WhatsApp: {wa_digits or contact_id or '-'}")
    if wa_digits:
        lines.append(f"🔗 https://wa.me/{wa_digits}")
    lines.append(f"🕒 {now.strftime('%Y-%m-%d %H:%M')}")
    return "\n".join(lines)


class NotificationGuard:
    def __init__(
        self,
        repository: StateRepository,
        notifier: Optional[Notifier],
        *,
        target_id: str = "",
        bot_name: str = "Zia Bot",
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.target_id = target_id
        self.bot_name = bot_name

    @property
    def schema(self) -> SlotSchema:
        return self.repository.schema

    def _can_deliver(self) -> bool:
        return bool(self.notifier is not None and self.notifier.configured and self.target_id)

    async def maybe_notify(self, contact_id: str, state: ConversationState) -> bool:
        """
        Fire the admin notification if this lead just completed.

        Mutates `state.notified`. Returns True when a delivery was attempted.
        """
        if state.notified or not is_lead_complete(state, self.schema):
            return False

        state.notified = True
        try:
            await self.repository.save(contact_id, state)
        except StoreError as e:
            # Without the persisted flag a later turn could send again.
            state.notified = False
            logger.error(json.dumps({
                "event": "admin_notify_skipped",
                "reason": "flag_not_persisted",
                "contact_id": contact_id,
                "error": str(e),
            }))
            return False

        if not self._can_deliver():
            logger.info(json.dumps({
                "event": "admin_notify_skipped",
                "reason": "not_configured",
                "contact_id": contact_id,
            }))
            return False

        summary = build_lead_summary(contact_id, state, self.schema, bot_name=self.bot_name)
        try:
            await self.notifier.send(self.target_id, summary)
            logger.info(json.dumps({"event": "admin_notify_sent", "contact_id": contact_id}))
        except Exception as e:
            logger.error(json.dumps({
                "event": "admin_notify_failed",
                "contact_id": contact_id,
                "error": str(e)[:300],
            }))
        return True
