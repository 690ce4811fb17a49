"""
CatatBot entry point

FastAPI webhook server + python-telegram-bot Application.
Chat-driven income/expense entry with rule-based approval.

Local dev:   uvicorn catatbot.main:api --host 0.0.0.0 --port 8000 --reload
Production:  set WEBHOOK_URL (https) and WEBHOOK_SECRET
"""

import hmac
import json as _json
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    filters,
)

from catatbot.config import (
    APPROVER_USER_IDS,
    DATABASE_URL,
    DB_TIMEOUT_SECONDS,
    LOG_LEVEL,
    PARTIAL_DATA_TTL_MINUTES,
    TELEGRAM_BOT_TOKEN,
    WEBHOOK_SECRET,
    WEBHOOK_URL,
)
from catatbot.database.connection import close_pool, init_pool, run_migrations
from catatbot.database.transactions import PostgresTransactionRepository
from catatbot.handlers.approval import (
    handle_approve_command,
    handle_detail_command,
    handle_pending_command,
    handle_reject_command,
    handle_stats_command,
)
from catatbot.handlers.common import handle_cancel, handle_help, handle_start
from catatbot.handlers.transaction import (
    handle_catat_command,
    handle_retry_command,
    handle_text_router,
)
from catatbot.services.approval import ApprovalScorer
from catatbot.services.categories import PostgresCategoryDirectory
from catatbot.services.cleanup import setup_cleanup_scheduler, shutdown_cleanup_scheduler
from catatbot.services.notifier import TelegramNotifier
from catatbot.services.processor import TransactionProcessor
from catatbot.services.recovery import RecoveryManager
from catatbot.services.transitions import ApprovalTransitionManager
from catatbot.services.workflow import WorkflowEngine
from catatbot.utils.state import PostgresPartialDataStore, PostgresSessionStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Suppress httpx INFO logs: they contain the bot token in URLs
logging.getLogger("httpx").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Telegram bot application (global, initialized on startup)
# ---------------------------------------------------------------------------
bot_app: Application | None = None


def register_handlers(app: Application) -> None:
    """Commands first, then the free-text workflow router."""
    app.add_handler(CommandHandler("start", handle_start))
    app.add_handler(CommandHandler("help", handle_help))
    app.add_handler(CommandHandler("catat", handle_catat_command))
    app.add_handler(CommandHandler(["batal", "cancel"], handle_cancel))
    app.add_handler(CommandHandler("retry", handle_retry_command))
    app.add_handler(CommandHandler("pending", handle_pending_command))
    app.add_handler(CommandHandler("approve", handle_approve_command))
    app.add_handler(CommandHandler("reject", handle_reject_command))
    app.add_handler(CommandHandler("detail", handle_detail_command))
    app.add_handler(CommandHandler("stats", handle_stats_command))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text_router))


def build_services(app: Application, pool, notifier: TelegramNotifier) -> None:
    """Wire stores, scorer and workflow into bot_data for the handlers."""
    sessions = PostgresSessionStore(pool)
    partials = PostgresPartialDataStore(pool, PARTIAL_DATA_TTL_MINUTES)
    repository = PostgresTransactionRepository(pool)

    processor = TransactionProcessor(
        repository,
        ApprovalScorer(repository),
        notifier,
        approver_ids=APPROVER_USER_IDS,
        timeout=DB_TIMEOUT_SECONDS,
    )
    app.bot_data["db_pool"] = pool
    app.bot_data["notifier"] = notifier
    app.bot_data["workflow"] = WorkflowEngine(
        sessions,
        PostgresCategoryDirectory(pool),
        processor,
        RecoveryManager(sessions, partials),
    )
    app.bot_data["transitions"] = ApprovalTransitionManager(repository, notifier)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan, replacing the deprecated on_event startup/shutdown."""
    global bot_app

    # --- STARTUP ---
    # 1. Database
    pool = await init_pool(DATABASE_URL, command_timeout=DB_TIMEOUT_SECONDS)
    await run_migrations(pool)

    # 2. Build bot application and services
    bot_app = Application.builder().token(TELEGRAM_BOT_TOKEN).build()
    notifier = TelegramNotifier(bot_app.bot)
    build_services(bot_app, pool, notifier)

    # 3. Register handlers
    register_handlers(bot_app)

    # 4. Initialize and start bot
    await bot_app.initialize()
    await bot_app.start()

    # 5. Set webhook (production) or polling (local dev)
    if WEBHOOK_URL:
        if not WEBHOOK_URL.startswith("https://"):
            raise ValueError("WEBHOOK_URL must use HTTPS — got: %s" % WEBHOOK_URL[:30])
        webhook_url = f"{WEBHOOK_URL}/webhook"
        await bot_app.bot.set_webhook(
            url=webhook_url,
            secret_token=WEBHOOK_SECRET,
        )
        logger.info("Webhook set: %s", webhook_url)
    else:
        # Local dev: delete any old webhook and start polling
        await bot_app.bot.delete_webhook(drop_pending_updates=True)
        await bot_app.updater.start_polling(drop_pending_updates=True)
        logger.info("No WEBHOOK_URL — running in polling mode (local dev)")

    # 6. Cleanup scheduler
    setup_cleanup_scheduler(pool)

    logger.info("CatatBot started successfully")

    yield  # Application runs here

    # --- SHUTDOWN ---
    shutdown_cleanup_scheduler()
    if bot_app:
        if bot_app.updater and bot_app.updater.running:
            await bot_app.updater.stop()
        await bot_app.stop()
        await notifier.drain()
        await bot_app.shutdown()
    await close_pool()
    logger.info("CatatBot shut down")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
api = FastAPI(title="CatatBot", version="1.0.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Rate limiter (simple in-memory, per-IP)
# ---------------------------------------------------------------------------
_rate_limit_window = 60  # seconds
_rate_limit_max = 60     # max requests per window
_rate_buckets: dict[str, list[float]] = defaultdict(list)

MAX_WEBHOOK_BODY_BYTES = 1_048_576


def _is_rate_limited(client_ip: str) -> bool:
    """Check if a client IP has exceeded the rate limit."""
    now = time.monotonic()
    _evict_stale_buckets(now)
    recent = [ts for ts in _rate_buckets[client_ip] if now - ts < _rate_limit_window]
    if len(recent) >= _rate_limit_max:
        _rate_buckets[client_ip] = recent
        return True
    recent.append(now)
    _rate_buckets[client_ip] = recent
    return False


def _evict_stale_buckets(now: float) -> None:
    """Drop IPs with no request inside the window."""
    stale = [
        ip for ip, stamps in _rate_buckets.items()
        if not stamps or now - stamps[-1] >= _rate_limit_window
    ]
    for ip in stale:
        del _rate_buckets[ip]


# ---------------------------------------------------------------------------
# Webhook endpoint
# ---------------------------------------------------------------------------

@api.post("/webhook")
async def webhook(request: Request) -> Response:
    """Telegram webhook endpoint. Receives updates from Telegram servers."""
    client_ip = request.client.host if request.client else "unknown"
    if _is_rate_limited(client_ip):
        logger.warning("Rate limited: %s", client_ip)
        return Response(status_code=429)

    if not WEBHOOK_SECRET:
        logger.error("WEBHOOK_SECRET not configured — rejecting all webhook requests")
        return Response(status_code=500)

    # Constant-time comparison of the secret token
    secret = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not hmac.compare_digest(secret, WEBHOOK_SECRET):
        logger.warning("Webhook secret mismatch from %s", client_ip)
        return Response(status_code=403)

    if bot_app is None:
        logger.error("Bot application not initialized")
        return Response(status_code=503)

    body = await request.body()
    if len(body) > MAX_WEBHOOK_BODY_BYTES:
        logger.warning("Webhook payload too large: %d bytes", len(body))
        return Response(status_code=413)

    try:
        data = _json.loads(body)
    except ValueError:
        logger.warning("Webhook payload is not JSON from %s", client_ip)
        return Response(status_code=400)
    update = Update.de_json(data, bot_app.bot)
    await bot_app.process_update(update)
    return Response(status_code=200)


@api.get("/health")
async def health():
    """Health check endpoint. Minimal response to avoid leaking identity."""
    return {"status": "ok"}
