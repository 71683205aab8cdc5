import logging

from fastapi import FastAPI
from dotenv import load_dotenv

from .config import Settings, settings
from .adapters.messaging.manychat import ManyChatNotifier
from .bot.audio import WhisperTranscriber
from .bot.llm import LLMOracle
from .bot.notify import NotificationGuard
from .bot.processor import LeadBot
from .bot.slots import SlotSchema
from .bot.store import StateRepository, build_store
from .bot.webhook import router as bot_webhook_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Lead Qualification Bot", version="0.3.0")
load_dotenv()
app.include_router(bot_webhook_router)


async def build_bot(cfg: Settings) -> LeadBot:
    """Construct the bot and its collaborators once per process."""
    schema = SlotSchema.from_config(cfg.lead_slots, cfg.lead_freeform_slot)
    store = await build_store(cfg)
    repository = StateRepository(
        store,
        schema,
        key_prefix=cfg.lead_key_prefix,
        ttl_seconds=cfg.state_ttl_seconds,
    )
    oracle = LLMOracle(
        schema,
        model=cfg.llm_model,
        openai_api_key=cfg.openai_api_key,
        anthropic_api_key=cfg.anthropic_api_key,
        timeout=cfg.oracle_timeout_seconds,
        max_tokens=cfg.oracle_max_tokens,
    )
    transcriber = WhisperTranscriber(
        cfg.openai_api_key,
        model=cfg.transcribe_model,
        language=cfg.transcribe_language,
        timeout=cfg.audio_timeout_seconds,
    )
    notifier = ManyChatNotifier(
        cfg.manychat_api_key,
        base_url=cfg.manychat_api_base,
        timeout=cfg.notify_timeout_seconds,
    )
    guard = NotificationGuard(
        repository,
        notifier,
        target_id=cfg.admin_subscriber_id,
        bot_name=cfg.bot_name,
    )
    logger.info(
        "bot ready: slots=%s freeform=%s store=%s model=%s",
        ",".join(schema.order),
        schema.freeform_slot,
        type(store).__name__,
        cfg.llm_model,
    )
    return LeadBot(
        schema=schema,
        repository=repository,
        oracle=oracle,
        transcriber=transcriber,
        guard=guard,
        bot_name=cfg.bot_name,
        context_turns=cfg.context_turns,
        history_limit=cfg.history_limit,
    )


@app.on_event("startup")
async def _startup():
    if getattr(app.state, "bot", None) is None:
        app.state.bot = await build_bot(settings)

@app.on_event("shutdown")
async def _shutdown():
    bot = getattr(app.state, "bot", None)
    if bot is not None:
        await bot.repository.store.close()

@app.get("/health")
async def health():
    return {"ok": True, "service": settings.service_name, "env": settings.env}
