from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol
import json
import logging
import time

from leadbot.bot.heuristics import is_acknowledgment, looks_like_audio_url, safe_text
from leadbot.bot.json_repair import parse_with_repair
from leadbot.bot.llm import CLOSING_REPLY, build_system_prompt, schema_hint
from leadbot.bot.notify import NotificationGuard
from leadbot.bot.reconciler import (
    force_close_if_complete,
    parse_oracle_payload,
    prefill_freeform_slot,
    reconcile,
)
from leadbot.bot.slots import SlotSchema
from leadbot.bot.state import ConversationState, clamp_history
from leadbot.bot.store import StateRepository, StoreError
from leadbot.bot.trace_logger import log_turn

logger = logging.getLogger(__name__)

# Fixed replies. Every failure path answers in character, never with an error.
INVALID_INPUT_REPLY = "Could you send me your message again, please? 😊"
EMPTY_MESSAGE_REPLY = "Your message came through blank 😅 Could you repeat it in one line?"
COULD_NOT_HEAR_REPLY = (
    "I couldn't hear the voice note clearly 😅 "
    "Could you send it as text or record it again?"
)
CLOSED_ACK_REPLY = "All set! Your details are registered 🙌 A representative will message you shortly."
UNPARSEABLE_REPLY = "I lost the signal for a moment 😅 Could you repeat that in one line, please?"
ERROR_REPLY = "Something got tangled for a moment 😅 Could you send it again in one line?"

ROUTE_INVALID_INPUT = "invalid_input"
ROUTE_EMPTY_MESSAGE = "empty_message"
ROUTE_TRANSCRIPTION_FAILED = "transcription_failed"
ROUTE_ACK_CLOSED = "ack_closed"
ROUTE_ORACLE_UNPARSEABLE = "oracle_unparseable"
ROUTE_COLLECTING = "collecting"
ROUTE_CLOSED = "closed"
ROUTE_ERROR = "error"


class Oracle(Protocol):
    async def complete(
        self,
        system_prompt: str,
        state_snapshot: dict[str, Any],
        history: list[dict[str, str]],
        user_text: str,
    ) -> Optional[str]: ...

    async def repair(self, raw: str, hint: str) -> Optional[str]: ...


class Transcriber(Protocol):
    async def transcribe(self, url: str) -> str: ...


@dataclass
class TurnRequest:
    contact_id: str
    user_text: str = ""
    audio_url: str = ""


@dataclass
class TurnResult:
    reply: str
    route: str
    state: Optional[ConversationState] = None
    trace: dict[str, Any] = field(default_factory=dict)


class LeadBot:
    """
    One request/response cycle per inbound message.

    Collaborators are injected once at startup; the bot keeps no per-contact
    state in memory. Everything about a contact lives in the store.
    """

    def __init__(
        self,
        *,
        schema: SlotSchema,
        repository: StateRepository,
        oracle: Oracle,
        transcriber: Optional[Transcriber] = None,
        guard: Optional[NotificationGuard] = None,
        bot_name: str = "Zia Bot",
        context_turns: int = 10,
        history_limit: int = 12,
    ) -> None:
        self.schema = schema
        self.repository = repository
        self.oracle = oracle
        self.transcriber = transcriber
        self.guard = guard
        self.context_turns = context_turns
        self.history_limit = history_limit
        self.system_prompt = build_system_prompt(schema, bot_name=bot_name)
        self.repair_hint = schema_hint(schema)

    async def handle_turn(self, req: TurnRequest) -> TurnResult:
        started = time.monotonic()
        try:
            result = await self._run_turn(req)
        except Exception:
            logger.exception("turn failed contact_id=%s", req.contact_id)
            result = TurnResult(reply=ERROR_REPLY, route=ROUTE_ERROR)

        log_turn(
            contact_id=safe_text(req.contact_id) or "(missing)",
            route=result.route,
            duration_ms=int((time.monotonic() - started) * 1000),
            **result.trace,
        )
        return result

    async def _save(self, contact_id: str, state: ConversationState) -> bool:
        try:
            await self.repository.save(contact_id, state)
            return True
        except StoreError as e:
            logger.error(json.dumps({
                "event": "state_save_failed",
                "contact_id": contact_id,
                "error": str(e),
            }))
            return False

    async def _run_turn(self, req: TurnRequest) -> TurnResult:
        contact_id = safe_text(req.contact_id)
        if not contact_id:
            return TurnResult(reply=INVALID_INPUT_REPLY, route=ROUTE_INVALID_INPUT)

        user_text = safe_text(req.user_text)
        audio_url = ""
        if looks_like_audio_url(user_text):
            audio_url = user_text
        elif not user_text:
            audio_url = safe_text(req.audio_url)

        if audio_url:
            transcript = await self.transcriber.transcribe(audio_url) if self.transcriber else ""
            if not transcript:
                return TurnResult(
                    reply=COULD_NOT_HEAR_REPLY,
                    route=ROUTE_TRANSCRIPTION_FAILED,
                    trace={"audio": True},
                )
            user_text = transcript

        if not user_text:
            return TurnResult(reply=EMPTY_MESSAGE_REPLY, route=ROUTE_EMPTY_MESSAGE)

        state = await self.repository.load(contact_id)
        pending_before = state.pending(self.schema)
        trace: dict[str, Any] = {"pending_before": pending_before, "audio": bool(audio_url)}

        # Closed lead saying "ok"/"thanks": answer without the oracle.
        if state.is_closed() and is_acknowledgment(user_text):
            state.append_turn(user_text, CLOSED_ACK_REPLY, self.history_limit)
            await self._save(contact_id, state)
            trace["pending_after"] = state.pending(self.schema)
            return TurnResult(reply=CLOSED_ACK_REPLY, route=ROUTE_ACK_CLOSED, state=state, trace=trace)

        # The stored state is not touched until the oracle output is usable.
        working = state.copy()
        trace["prefilled"] = prefill_freeform_slot(working, user_text, self.schema)

        try:
            raw = await self.oracle.complete(
                self.system_prompt,
                working.snapshot(self.schema),
                clamp_history(working.history, self.context_turns),
                user_text,
            )
        except Exception as e:
            logger.error("oracle call failed contact_id=%s: %s", contact_id, e)
            raw = None

        outcome = await parse_with_repair(raw, self.oracle, self.repair_hint)
        trace["repair_attempted"] = outcome.repair_attempted
        if not outcome.ok:
            trace["pending_after"] = pending_before
            return TurnResult(
                reply=UNPARSEABLE_REPLY,
                route=ROUTE_ORACLE_UNPARSEABLE,
                state=state,
                trace=trace,
            )

        oracle_reply = parse_oracle_payload(outcome.parsed)
        new_state = reconcile(working, oracle_reply.delta, self.schema)

        reply = oracle_reply.reply
        forced = force_close_if_complete(new_state, self.schema)
        if forced and not state.is_closed():
            reply = CLOSING_REPLY

        new_state.append_turn(user_text, reply, self.history_limit)
        await self._save(contact_id, new_state)

        notified = False
        if self.guard is not None:
            notified = await self.guard.maybe_notify(contact_id, new_state)

        trace["pending_after"] = new_state.pending(self.schema)
        trace["filled"] = [
            name for name in self.schema.order
            if not state.slots.get(name) and new_state.slots.get(name)
        ]
        trace["notified"] = notified

        route = ROUTE_CLOSED if new_state.is_closed() else ROUTE_COLLECTING
        return TurnResult(reply=reply, route=route, state=new_state, trace=trace)
