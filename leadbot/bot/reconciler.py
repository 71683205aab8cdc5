"""
Merge the oracle's proposed state into the stored conversation state.

Merge policy, per slot:
    new = delta[slot] if delta[slot] is non-empty else current
so the oracle can fill or overwrite a slot but never blank it. Flags are
taken from the delta only when it carries a real boolean. The oracle's
"pending" is ignored; pending is always derived from the slots.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import logging

from leadbot.bot.heuristics import looks_like_business_name, looks_like_link_or_handle, safe_text
from leadbot.bot.slots import PENDING_NONE, SlotSchema
from leadbot.bot.state import OUTCOME_QUALIFIED, ConversationState

logger = logging.getLogger(__name__)

REPEAT_REPLY = "Could you repeat that in one line, please? 😊"


@dataclass
class OracleReply:
    reply: str
    delta: dict[str, Any] = field(default_factory=dict)


def parse_oracle_payload(payload: dict[str, Any]) -> OracleReply:
    reply = safe_text(payload.get("reply")) or REPEAT_REPLY
    delta = payload.get("state")
    if not isinstance(delta, dict):
        delta = {}
    return OracleReply(reply=reply, delta=delta)


def reconcile(
    state: ConversationState,
    delta: dict[str, Any],
    schema: SlotSchema,
) -> ConversationState:
    """Return a new state; `state` is left untouched."""
    merged = state.copy()

    for name in schema.order:
        proposed = delta.get(name)
        if isinstance(proposed, (str, int, float)) and not isinstance(proposed, bool):
            value = safe_text(proposed)
            if value:
                merged.slots[name] = value

    proposed_outcome = delta.get("outcome")
    if isinstance(proposed_outcome, str) and proposed_outcome.strip():
        merged.outcome = proposed_outcome.strip()

    if isinstance(delta.get("closed"), bool):
        merged.closed = delta["closed"]
    if isinstance(delta.get("closing_sent"), bool):
        merged.closing_sent = delta["closing_sent"]

    if merged.closed and not schema.all_filled(merged.slots):
        logger.info(
            "reconcile: oracle closed with pending=%s, reopening",
            schema.pending(merged.slots),
        )
        merged.closed = False
        merged.closing_sent = False

    return merged


def prefill_freeform_slot(state: ConversationState, text: str, schema: SlotSchema) -> bool:
    """Fill the free-form slot from the raw text before the oracle sees the turn."""
    slot = schema.freeform_slot
    if not slot or state.pending(schema) != slot or state.slots.get(slot):
        return False
    if looks_like_link_or_handle(text) or looks_like_business_name(text):
        state.slots[slot] = safe_text(text)
        return True
    return False


def force_close_if_complete(state: ConversationState, schema: SlotSchema) -> bool:
    """
    Close the lead once every slot is filled.

    Returns True when the oracle had not closed it itself, meaning its reply
    is not the closing message and must be replaced.
    """
    if schema.pending(state.slots) != PENDING_NONE:
        return False

    forced = not (state.closed and state.closing_sent)
    state.closed = True
    state.closing_sent = True
    if not state.outcome:
        state.outcome = OUTCOME_QUALIFIED
    return forced
