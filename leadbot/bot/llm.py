"""
Text-understanding oracle for the lead-qualification bot.

Provides:
- System prompt built from the declared slot schema
- Primary completion (reply + proposed state as one JSON object)
- One-shot JSON repair call
- Deterministic stub oracle for local runs and tests (model="stub")
"""
from __future__ import annotations
from typing import Any, Optional
import json
import logging

import httpx

from leadbot.bot.heuristics import is_filler
from leadbot.bot.slots import PENDING_NONE, SlotSchema

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"

CLOSING_REPLY = "All set! Your details are registered 🙌 a representative will message you shortly."


# --- Prompts ---

SYSTEM_PROMPT = """You are {bot_name}, the sales assistant of an automation agency. You talk like a real person: warm, professional, relaxed. Answer in the user's language.

KEY RULES
- Do not greet again if the history already has bot messages.
- Short messages (2-3 lines max).
- One question per message.
- Natural, varied emojis.
- No labels like "[CLIENT]", no long proposals, no bullet lists.
- Never invent data the user did not say.

GOAL
Capture the lead with ONLY {slot_count} questions. No demos, no prices, no discounts.

QUESTIONS (in this order, include the examples in the same message)
{questions}

IMPORTANT
- If the user answers several things in one message (including transcribed audio), extract and keep EVERYTHING you can for: {slot_names}.
- If you already have all {slot_count} answers, do NOT ask more: close.
- Accept short numbers for volume answers: "5", "15", "30", "60+".

TASK
- Use the received state ({state_keys}).
- Ask ONLY the pending item, following the order {slot_arrow}.
- When you have all {slot_count}, reply EXACTLY:
  "{closing_reply}"
  and set closed=true, closing_sent=true.

MANDATORY OUTPUT:
Return ONLY valid JSON (no extra text), in this format:
{schema}"""

REPAIR_PROMPT = (
    "Convert the user's content into ONE single valid JSON object with the schema: "
    "{schema}. No extra text."
)

REPAIR_EMPTY_INPUT = "Reply with valid JSON following the schema."


def schema_example(schema: SlotSchema) -> dict[str, Any]:
    state: dict[str, Any] = {name: "" for name in schema.order}
    state["closed"] = False
    state["closing_sent"] = False
    state["pending"] = schema.pending_choices()
    return {"reply": "message for the user", "state": state}


def schema_hint(schema: SlotSchema) -> str:
    slots = ",".join(schema.order)
    return f"{{reply:string, state:{{{slots},closed:boolean,closing_sent:boolean,pending}}}}"


def build_system_prompt(schema: SlotSchema, bot_name: str = "Zia Bot") -> str:
    questions = []
    for i, name in enumerate(schema.order, start=1):
        spec = schema.spec(name)
        line = f"{i}) ({name}) {spec.question}"
        if spec.examples:
            line += f" Examples: {spec.examples}."
        questions.append(line)

    return SYSTEM_PROMPT.format(
        bot_name=bot_name,
        slot_count=len(schema.order),
        questions="\n".join(questions),
        slot_names=", ".join(schema.order),
        state_keys="/".join(schema.order + ("closed", "closing_sent", "pending")),
        slot_arrow=" -> ".join(schema.order),
        closing_reply=CLOSING_REPLY,
        schema=json.dumps(schema_example(schema), indent=2),
    )


# --- Core LLM caller ---

async def _call_llm(
    model: str,
    messages: list[dict[str, str]],
    *,
    openai_api_key: str = "",
    anthropic_api_key: str = "",
    temperature: float = 0,
    max_tokens: int = 260,
    timeout: float = 20.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """
    Call OpenAI or Anthropic API in JSON mode. Returns response text or None on failure.

    System messages are concatenated for Anthropic, which takes a single system field.
    """
    try:
        if model.startswith("gpt-") or model.startswith("o1"):
            if not openai_api_key:
                logger.warning("llm: OPENAI_API_KEY is not set")
                return None

            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                resp = await client.post(
                    OPENAI_CHAT_URL,
                    headers={"Authorization": f"Bearer {openai_api_key}", "Content-Type": "application/json"},
                    json={
                        "model": model,
                        "messages": messages,
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                        "response_format": {"type": "json_object"},
                    },
                )
                resp.raise_for_status()
                return (resp.json()["choices"][0]["message"]["content"] or "").strip()

        elif model.startswith("claude-"):
            if not anthropic_api_key:
                logger.warning("llm: ANTHROPIC_API_KEY is not set")
                return None

            system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
            convo = [m for m in messages if m["role"] != "system"]
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                resp = await client.post(
                    ANTHROPIC_MESSAGES_URL,
                    headers={
                        "x-api-key": anthropic_api_key,
                        "anthropic-version": "2023-06-01",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": model,
                        "system": system,
                        "messages": convo,
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                    },
                )
                resp.raise_for_status()
                return resp.json()["content"][0]["text"].strip()

        logger.warning("llm: unknown model %s", model)
        return None

    except Exception as e:
        logger.error("LLM call failed (%s): %s", model, e)
        return None


# --- Stub oracle (for testing without API) ---

def _stub_complete(state_snapshot: dict[str, Any], user_text: str, schema: SlotSchema) -> str:
    """Fill the pending slot with the user's text (unless it is filler) and ask the next question."""
    state = {name: state_snapshot.get(name, "") for name in schema.order}
    pending = schema.pending(state)
    if pending != PENDING_NONE and not is_filler(user_text):
        state[pending] = user_text.strip()

    nxt = schema.pending(state)
    if nxt == PENDING_NONE:
        reply = CLOSING_REPLY
        closed = True
    else:
        spec = schema.spec(nxt)
        reply = f"{spec.question} Examples: {spec.examples}." if spec.examples else spec.question
        closed = False

    out_state: dict[str, Any] = dict(state)
    out_state["closed"] = closed
    out_state["closing_sent"] = closed
    out_state["pending"] = nxt
    return json.dumps({"reply": reply, "state": out_state}, ensure_ascii=False)


# --- Oracle ---

class LLMOracle:
    """Oracle backed by a chat-completion model, or the stub when model == "stub"."""

    def __init__(
        self,
        schema: SlotSchema,
        *,
        model: str = "stub",
        openai_api_key: str = "",
        anthropic_api_key: str = "",
        timeout: float = 20.0,
        max_tokens: int = 260,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.schema = schema
        self.model = model
        self.openai_api_key = openai_api_key
        self.anthropic_api_key = anthropic_api_key
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.transport = transport

    async def complete(
        self,
        system_prompt: str,
        state_snapshot: dict[str, Any],
        history: list[dict[str, str]],
        user_text: str,
    ) -> Optional[str]:
        if self.model == "stub":
            return _stub_complete(state_snapshot, user_text, self.schema)

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "system", "content": f"CURRENT STATE: {json.dumps(state_snapshot, ensure_ascii=False)}"},
            *history,
            {"role": "user", "content": user_text},
        ]
        return await _call_llm(
            self.model,
            messages,
            openai_api_key=self.openai_api_key,
            anthropic_api_key=self.anthropic_api_key,
            temperature=0.2,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def repair(self, raw: str, hint: str) -> Optional[str]:
        if self.model == "stub":
            return None

        messages = [
            {"role": "system", "content": REPAIR_PROMPT.format(schema=hint)},
            {"role": "user", "content": raw or REPAIR_EMPTY_INPUT},
        ]
        return await _call_llm(
            self.model,
            messages,
            openai_api_key=self.openai_api_key,
            anthropic_api_key=self.anthropic_api_key,
            temperature=0,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            transport=self.transport,
        )
