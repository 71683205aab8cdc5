"""
Voice notes: locate the audio reference in a webhook body and transcribe it.

Transcription never raises; every failure returns "" and the turn answers
with the "could not hear you" reply.
"""
from __future__ import annotations
from typing import Any, Optional
import json
import logging
import re

import httpx

logger = logging.getLogger(__name__)

OPENAI_TRANSCRIBE_URL = "https://api.openai.com/v1/audio/transcriptions"

_URL_RE = re.compile(r"https?://[^\s\"']+", re.IGNORECASE)

DIRECT_AUDIO_KEYS = (
    "voice_url", "audio_url", "media_url", "attachment_url", "file_url", "voice", "audio",
)

CONTENT_TYPE_EXT = (
    ("audio/ogg", "ogg"),
    ("audio/opus", "ogg"),
    ("audio/mpeg", "mp3"),
    ("audio/mp3", "mp3"),
    ("audio/mp4", "m4a"),
    ("audio/x-m4a", "m4a"),
    ("audio/wav", "wav"),
    ("audio/webm", "webm"),
)


def _try_parse_json(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def find_first_url_deep(value: Any) -> str:
    """Depth-first search for the first http(s) URL in nested data."""
    seen: set[int] = set()

    def walk(x: Any) -> str:
        if x is None:
            return ""
        if isinstance(x, str):
            m = _URL_RE.search(x.strip())
            return m.group(0) if m else ""
        if not isinstance(x, (dict, list)):
            return ""
        if id(x) in seen:
            return ""
        seen.add(id(x))
        items = x.values() if isinstance(x, dict) else x
        for item in items:
            url = walk(item)
            if url:
                return url
        return ""

    return walk(value)


def _first_attachment_url(attachments: Any) -> str:
    if not isinstance(attachments, list) or not attachments:
        return ""
    first = attachments[0]
    if not isinstance(first, dict):
        return ""
    payload = first.get("payload") if isinstance(first.get("payload"), dict) else {}
    url = first.get("url") or payload.get("url") or ""
    return url.strip() if isinstance(url, str) else ""


def get_audio_url(body: Any) -> str:
    """Find a voice-note URL in the provider payload, wherever it was put."""
    if not isinstance(body, dict):
        return ""

    direct = next((body[k] for k in DIRECT_AUDIO_KEYS if body.get(k)), None)
    if direct:
        parsed = _try_parse_json(direct)
        url = find_first_url_deep(parsed) if parsed is not None else ""
        if not url:
            url = find_first_url_deep(str(direct))
        if url:
            return url.strip()

    url = _first_attachment_url(body.get("attachments"))
    if url:
        return url

    message = body.get("message")
    if isinstance(message, dict):
        url = _first_attachment_url(message.get("attachments"))
        if url:
            return url

    fcd = body.get("full_contact_data")
    if fcd:
        parsed = _try_parse_json(fcd)
        url = find_first_url_deep(parsed if parsed is not None else fcd)
        if url:
            return url.strip()

    return ""


def ext_from_content_type(content_type: Optional[str]) -> str:
    c = (content_type or "").lower()
    for marker, ext in CONTENT_TYPE_EXT:
        if marker in c:
            return ext
    return "ogg"


class WhisperTranscriber:
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "whisper-1",
        language: str = "es",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self.transport = transport

    async def transcribe(self, url: str) -> str:
        url = (url or "").strip()
        if not url:
            return ""
        if not self.api_key:
            logger.warning("transcribe: OPENAI_API_KEY is not set")
            return ""

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self.transport
            ) as client:
                audio = await client.get(url, headers={"User-Agent": "Mozilla/5.0"})
                audio.raise_for_status()
                ext = ext_from_content_type(audio.headers.get("content-type"))
                content_type = audio.headers.get("content-type") or "application/octet-stream"

                resp = await client.post(
                    OPENAI_TRANSCRIBE_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data={"model": self.model, "language": self.language},
                    files={"file": (f"voice-note.{ext}", audio.content, content_type)},
                )
                resp.raise_for_status()
                text = resp.json().get("text") or ""
        except Exception as e:
            logger.error(json.dumps({
                "event": "transcribe_failed",
                "url": url[:200],
                "error": str(e)[:300],
            }))
            return ""

        return text.strip()
