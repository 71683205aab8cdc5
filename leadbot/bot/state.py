"""
Per-contact conversation state.

Serialized as one JSON object per contact in the conversation store:

    {"v": 1, "slots": {...}, "closed": false, "closing_sent": false,
     "pending": "sector", "outcome": "", "history": [...], "notified": false}

`pending` is written for observability only; on load it is recomputed from
the slots and the declared slot order.
"""
from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from leadbot.bot.heuristics import safe_text
from leadbot.bot.slots import SlotSchema

SCHEMA_VERSION = 1

OUTCOME_QUALIFIED = "qualified"

# Keys used by the unversioned records written before slots were nested.
_LEGACY_SLOT_KEYS: dict[str, tuple[str, ...]] = {
    "sector": ("sector",),
    "service": ("service", "servicio"),
    "volume": ("volume", "redes"),
    "objective": ("objective", "objetivo"),
}
_LEGACY_FLAG_KEYS: dict[str, tuple[str, ...]] = {
    "closed": ("closed", "cerrado"),
    "closing_sent": ("closing_sent", "cierre_enviado"),
    "notified": ("notified", "admin_notified"),
}


@dataclass
class ConversationState:
    slots: dict[str, str]
    closed: bool = False
    closing_sent: bool = False
    outcome: str = ""
    notified: bool = False
    history: list[dict[str, str]] = field(default_factory=list)

    def copy(self) -> "ConversationState":
        return copy.deepcopy(self)

    def pending(self, schema: SlotSchema) -> str:
        return schema.pending(self.slots)

    def is_closed(self) -> bool:
        return self.closed and self.closing_sent

    def append_turn(self, user_text: str, reply: str, limit: int) -> None:
        self.history = clamp_history(
            self.history
            + [
                {"role": "user", "content": user_text},
                {"role": "assistant", "content": reply},
            ],
            limit,
        )

    def snapshot(self, schema: SlotSchema) -> dict[str, Any]:
        """State as shown to the oracle (no history, derived pending)."""
        snap: dict[str, Any] = {name: self.slots.get(name, "") for name in schema.order}
        snap["closed"] = bool(self.closed)
        snap["closing_sent"] = bool(self.closing_sent)
        snap["pending"] = self.pending(schema)
        return snap

    def to_dict(self, schema: SlotSchema) -> dict[str, Any]:
        return {
            "v": SCHEMA_VERSION,
            "slots": {name: self.slots.get(name, "") for name in schema.order},
            "closed": self.closed,
            "closing_sent": self.closing_sent,
            "pending": self.pending(schema),
            "outcome": self.outcome,
            "history": list(self.history),
            "notified": self.notified,
        }

    def dumps(self, schema: SlotSchema) -> str:
        return json.dumps(self.to_dict(schema), ensure_ascii=False)


def default_state(schema: SlotSchema) -> ConversationState:
    return ConversationState(slots=schema.empty_slots())


def clamp_history(history: Any, limit: int) -> list[dict[str, str]]:
    if not isinstance(history, list) or limit <= 0:
        return []
    return history[-limit:]


def _clean_history(raw: Any) -> list[dict[str, str]]:
    if not isinstance(raw, list):
        return []
    turns = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in ("user", "assistant") and isinstance(content, str):
            turns.append({"role": role, "content": content})
    return turns


def state_from_dict(data: Any, schema: SlotSchema) -> ConversationState:
    """Build a state from a stored record, versioned or legacy."""
    if not isinstance(data, dict):
        return default_state(schema)

    state = default_state(schema)
    nested = data.get("slots")

    for name in schema.order:
        if isinstance(nested, dict):
            state.slots[name] = safe_text(nested.get(name))
            continue
        for key in _LEGACY_SLOT_KEYS.get(name, (name,)):
            value = safe_text(data.get(key))
            if value:
                state.slots[name] = value
                break

    for attr, keys in _LEGACY_FLAG_KEYS.items():
        for key in keys:
            if isinstance(data.get(key), bool):
                setattr(state, attr, data[key])
                break

    state.outcome = safe_text(data.get("outcome"))
    if not state.outcome and "objective" not in schema.order:
        # Old 3-slot records kept the qualified marker under "objetivo".
        state.outcome = safe_text(data.get("objetivo"))

    state.history = _clean_history(data.get("history"))
    return state


def loads_state(raw: Optional[str], schema: SlotSchema) -> ConversationState:
    if not raw:
        return default_state(schema)
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default_state(schema)
    return state_from_dict(data, schema)
