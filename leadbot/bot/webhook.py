"""
Bot inbound webhook: receives a ManyChat External Request and answers it inline.

Endpoint: POST /mc/reply

ManyChat waits for the reply in the same request, so the turn runs
synchronously and the response body is always {"reply": "..."}.

Expected body fields (set in the ManyChat request body):
  contact_id         subscriber id / WhatsApp number (required)
  user_text          last text input (may be empty for voice notes)
  voice_url          voice note URL; also audio_url, media_url, attachment_url,
                     file_url, voice, audio, attachments[0].url,
                     message.attachments[0].url or anywhere in full_contact_data
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from leadbot.bot.audio import get_audio_url
from leadbot.bot.heuristics import safe_text
from leadbot.bot.processor import LeadBot, TurnRequest
from leadbot.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bot-webhook"])

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _authorized(request: Request, token: str) -> bool:
    """Bearer token equality. No token configured means dev mode (open)."""
    if not token:
        return True
    return request.headers.get("authorization") == f"Bearer {token}"


def _get_bot(request: Request) -> LeadBot:
    bot: Optional[LeadBot] = getattr(request.app.state, "bot", None)
    if bot is None:
        raise RuntimeError("LeadBot is not initialised")
    return bot


def _turn_from_body(body: dict[str, Any]) -> TurnRequest:
    contact_id = safe_text(body.get("contact_id"))
    user_text = safe_text(body.get("user_text"))
    audio_url = get_audio_url(body) if not user_text else ""
    return TurnRequest(contact_id=contact_id, user_text=user_text, audio_url=audio_url)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/mc/reply")
async def mc_reply(request: Request) -> JSONResponse:
    """
    Answer one inbound message.

    Only the auth gate returns a non-200; every other failure is an
    in-character reply so ManyChat always has something to send.
    """
    if not _authorized(request, settings.mc_auth_token):
        logger.warning("mc_reply: unauthorized")
        return JSONResponse({"error": "unauthorized"}, status_code=401)

    try:
        body = await request.json()
    except Exception:
        body = {}
    if not isinstance(body, dict):
        body = {}

    turn = _turn_from_body(body)
    logger.info(json.dumps({
        "event": "mc_reply_received",
        "contact_id": turn.contact_id or "(missing)",
        "has_text": bool(turn.user_text),
        "has_audio": bool(turn.audio_url),
    }))

    result = await _get_bot(request).handle_turn(turn)
    return JSONResponse({"reply": result.reply})


class SimulateRequest(BaseModel):
    contact_id: str = "+18095550000"  # fake test number
    user_text: str = ""
    audio_url: str = ""


@router.post("/debug/bot/simulate")
async def debug_bot_simulate(body: SimulateRequest, request: Request) -> dict[str, Any]:
    """
    Simulate a conversation turn and return the reply with the resulting state.

    Goes through the real store and oracle; the admin notification fires as
    it would in production when the lead completes.
    Use the same contact_id across calls to simulate a multi-turn conversation.
    """
    if not _authorized(request, settings.mc_auth_token):
        raise HTTPException(status_code=401, detail="unauthorized")

    bot = _get_bot(request)
    result = await bot.handle_turn(
        TurnRequest(contact_id=body.contact_id, user_text=body.user_text, audio_url=body.audio_url)
    )
    state = result.state
    return {
        "reply": result.reply,
        "route": result.route,
        "pending": state.pending(bot.schema) if state else None,
        "slots": dict(state.slots) if state else None,
        "closed": state.is_closed() if state else None,
        "notified": state.notified if state else None,
    }
