import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()  # loads .env for local dev

@dataclass(frozen=True)
class Settings:
    env: str = os.getenv("ENV", "local")
    service_name: str = os.getenv("SERVICE_NAME", "leadbot")
    mc_auth_token: str = os.getenv("MC_AUTH_TOKEN", "")

    # Oracle
    llm_model: str = os.getenv("LLM_MODEL", os.getenv("OPENAI_MODEL", "gpt-4o-mini"))
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    oracle_timeout_seconds: float = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "20"))
    oracle_max_tokens: int = int(os.getenv("ORACLE_MAX_TOKENS", "260"))

    # Audio
    transcribe_model: str = os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1")
    transcribe_language: str = os.getenv("TRANSCRIBE_LANGUAGE", "es")
    audio_timeout_seconds: float = float(os.getenv("AUDIO_TIMEOUT_SECONDS", "20"))

    # Conversation state
    store_backend: str = os.getenv("STORE_BACKEND", "redis")
    redis_url: str = os.getenv("REDIS_URL", "")
    redis_force_tls: bool = os.getenv("REDIS_FORCE_TLS", "1").lower() not in ("0", "false", "no", "off")
    database_url: str = os.getenv("DATABASE_URL", "")
    lead_key_prefix: str = os.getenv("LEAD_KEY_PREFIX", "zia:")
    state_ttl_seconds: int = int(os.getenv("STATE_TTL_SECONDS", str(60 * 60 * 24 * 7)))
    history_limit: int = int(os.getenv("HISTORY_LIMIT", "12"))
    context_turns: int = int(os.getenv("CONTEXT_TURNS", "10"))

    # Slot schema
    lead_slots: str = os.getenv("LEAD_SLOTS", "sector,service,volume")
    lead_freeform_slot: str = os.getenv("LEAD_FREEFORM_SLOT", "volume")

    # Admin notification (ManyChat)
    manychat_api_key: str = os.getenv("MANYCHAT_API_KEY", "")
    manychat_api_base: str = os.getenv("MANYCHAT_API_BASE", "https://api.manychat.com")
    admin_subscriber_id: str = os.getenv("ADMIN_SUBSCRIBER_ID", "")
    notify_timeout_seconds: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "20"))
    bot_name: str = os.getenv("BOT_NAME", "Zia Bot")

settings = Settings()
