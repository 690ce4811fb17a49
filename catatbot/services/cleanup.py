"""
Periodic cleanup of idle sessions and expired recovery snapshots.

Runs every few minutes via APScheduler. A user who walks away mid-flow gets
a fresh MAIN menu on their next message instead of a stale prompt; snapshots
older than the TTL are no longer offered for recovery.
"""

import logging

import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catatbot.config import PARTIAL_DATA_TTL_MINUTES, SESSION_TIMEOUT_MINUTES

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_MINUTES = 5

_scheduler: AsyncIOScheduler | None = None


async def cleanup_stale_sessions(
    pool: asyncpg.Pool,
    timeout_minutes: int = SESSION_TIMEOUT_MINUTES,
) -> None:
    """Delete bot sessions not touched for `timeout_minutes`."""
    async with pool.acquire() as conn:
        deleted = await conn.execute(
            "DELETE FROM bot_sessions WHERE updated_at < NOW() - make_interval(mins => $1)",
            timeout_minutes,
        )
    # asyncpg returns "DELETE N" string
    if deleted and deleted != "DELETE 0":
        logger.info("Cleaned up stale sessions: %s", deleted)


async def cleanup_expired_partials(
    pool: asyncpg.Pool,
    ttl_minutes: int = PARTIAL_DATA_TTL_MINUTES,
) -> None:
    """Delete recovery snapshots older than `ttl_minutes`."""
    async with pool.acquire() as conn:
        deleted = await conn.execute(
            "DELETE FROM partial_transactions WHERE created_at < NOW() - make_interval(mins => $1)",
            ttl_minutes,
        )
    if deleted and deleted != "DELETE 0":
        logger.info("Cleaned up expired recovery snapshots: %s", deleted)


def setup_cleanup_scheduler(pool: asyncpg.Pool) -> AsyncIOScheduler:
    """Start APScheduler with the session and snapshot cleanup jobs."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        cleanup_stale_sessions,
        "interval",
        minutes=CLEANUP_INTERVAL_MINUTES,
        args=[pool],
        id="stale_session_cleanup",
        replace_existing=True,
    )
    _scheduler.add_job(
        cleanup_expired_partials,
        "interval",
        minutes=CLEANUP_INTERVAL_MINUTES,
        args=[pool],
        id="expired_partial_cleanup",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Scheduler started (session + recovery snapshot cleanup every %d min)",
                CLEANUP_INTERVAL_MINUTES)
    return _scheduler


def shutdown_cleanup_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
