from __future__ import annotations
from typing import Any
import re

# Closing acknowledgments. A message made only of these tokens is an ack.
ACK_VOCABULARY = frozenset({
    "ok", "okay", "oki", "k", "vale", "dale",
    "thanks", "thank you", "thx", "ty", "cheers",
    "done", "great", "perfect", "cool", "got it",
    "gracias", "perfecto", "listo", "genial", "hola", "mañana",
    "👍", "🙌", "🙏", "👌", "😊",
})

# Conversational filler and slot-option words that are never a business name.
NAME_DENYLIST = frozenset({
    "hola", "buenas", "buenos dias", "buenos días", "buenas tardes", "buenas noches",
    "hello", "hi", "hey", "good morning", "good afternoon", "good evening",
    "ok", "okay", "gracias", "thanks", "thank you",
    "mañana", "tomorrow", "perfecto", "perfect", "listo", "done",
    "si", "sí", "yes", "no", "nope", "maybe",
    "ambos", "ambas", "both", "redes", "bot", "ventas", "sales",
    "leads", "reservas", "bookings", "posicionamiento",
    "👍", "...", "..", ".",
})

LINK_FRAGMENTS = ("http", "www.", ".com", ".do", "wa.me")
SOCIAL_FRAGMENTS = ("instagram", "tiktok", "facebook")

AUDIO_EXTENSIONS = (".ogg", ".opus", ".mp3", ".m4a", ".wav", ".webm", ".aac")

_ACK_PHRASES = (("thank you", "thanks"), ("got it", "ok"), ("muchas gracias", "gracias"))
_TOKEN_TRIM = "!¡?¿.,;:~ "
_SPLIT_RE = re.compile(r"\s+")


def safe_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def is_acknowledgment(text: str) -> bool:
    """True for short closing acks like "ok", "gracias!" or "thanks 👍"."""
    t = safe_text(text).lower()
    if not t:
        return False
    if t in ACK_VOCABULARY or t.strip(_TOKEN_TRIM) in ACK_VOCABULARY:
        return True
    for phrase, token in _ACK_PHRASES:
        t = t.replace(phrase, token)
    tokens = [tok.strip(_TOKEN_TRIM) for tok in _SPLIT_RE.split(t)]
    tokens = [tok for tok in tokens if tok]
    return bool(tokens) and all(tok in ACK_VOCABULARY for tok in tokens)


def looks_like_link_or_handle(text: str) -> bool:
    """Handles, links and social profile names. Only ever widens acceptance."""
    s = safe_text(text)
    if "@" in s:
        return True
    low = s.lower()
    return any(f in low for f in LINK_FRAGMENTS) or any(f in low for f in SOCIAL_FRAGMENTS)


def is_filler(text: str) -> bool:
    """Greetings, thanks and bare punctuation, with or without "!" or "?"."""
    low = safe_text(text).lower()
    if low in NAME_DENYLIST:
        return True
    core = low.strip(_TOKEN_TRIM)
    return not core or core in NAME_DENYLIST


def looks_like_business_name(text: str) -> bool:
    """Default-accept: anything of 3+ chars that is not known filler."""
    s = safe_text(text)
    if len(s) < 3:
        return False
    return not is_filler(s)


def looks_like_audio_url(text: str) -> bool:
    s = safe_text(text).lower()
    if not s.startswith("http"):
        return False
    return any(ext in s for ext in AUDIO_EXTENSIONS)
