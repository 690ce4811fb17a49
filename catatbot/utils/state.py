"""
Session and recovery-snapshot stores backed by PostgreSQL.

Sessions live in `bot_sessions` (state column + JSONB context) so a restart
does not lose a half-entered transaction. Recovery snapshots live in their
own table because they must outlive the session they were taken from.
"""

import json
import logging
from typing import Optional

import asyncpg

from catatbot.database.models import PartialTransactionData, Session

logger = logging.getLogger(__name__)


class PostgresSessionStore:
    """Keyed per-user session storage. Pure data access, no workflow logic."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, user_id: int) -> Optional[Session]:
        """Fetch the current session for a user, or None if idle."""
        async with self.pool.acquire() as conn:
            record = await conn.fetchrow(
                "SELECT user_id, state, context, updated_at "
                "FROM bot_sessions WHERE user_id = $1",
                user_id,
            )
        if record is None:
            return None
        return Session.from_record(record)

    async def set(self, user_id: int, session: Session) -> None:
        """Create or replace the session for a user (UPSERT)."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO bot_sessions (user_id, state, context, updated_at)
                VALUES ($1, $2, $3::jsonb, NOW())
                ON CONFLICT (user_id) DO UPDATE
                SET state = $2, context = $3::jsonb, updated_at = NOW()
                """,
                user_id,
                session.menu_state.value,
                json.dumps(session.to_context(), ensure_ascii=False),
            )
        logger.debug("Session set: user_id=%d state=%s", user_id, session.menu_state.value)

    async def update(self, user_id: int, partial: dict) -> Session:
        """Merge `partial` (Session field names) into the stored session.

        Row-locked read-modify-write; creates a MAIN session if none exists.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                record = await conn.fetchrow(
                    "SELECT user_id, state, context, updated_at "
                    "FROM bot_sessions WHERE user_id = $1 FOR UPDATE",
                    user_id,
                )
                current = Session.from_record(record) if record else Session(user_id=user_id)
                updated = current.with_updates(**partial)
                await conn.execute(
                    """
                    INSERT INTO bot_sessions (user_id, state, context, updated_at)
                    VALUES ($1, $2, $3::jsonb, NOW())
                    ON CONFLICT (user_id) DO UPDATE
                    SET state = $2, context = $3::jsonb, updated_at = NOW()
                    """,
                    user_id,
                    updated.menu_state.value,
                    json.dumps(updated.to_context(), ensure_ascii=False),
                )
        logger.debug("Session updated: user_id=%d fields=%s", user_id, sorted(partial))
        return updated

    async def exists(self, user_id: int) -> bool:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM bot_sessions WHERE user_id = $1)", user_id
            )

    async def clear(self, user_id: int) -> None:
        """Delete session, returning to idle."""
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM bot_sessions WHERE user_id = $1", user_id)
        logger.debug("Session cleared: user_id=%d", user_id)


class PostgresPartialDataStore:
    """Recovery snapshots keyed by user, expiring after `ttl_minutes`."""

    def __init__(self, pool: asyncpg.Pool, ttl_minutes: int):
        self.pool = pool
        self.ttl_minutes = ttl_minutes

    async def save(self, user_id: int, data: PartialTransactionData) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO partial_transactions
                    (user_id, transaction_type, category, amount, description,
                     retry_count, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, NOW())
                ON CONFLICT (user_id) DO UPDATE
                SET transaction_type = $2, category = $3, amount = $4,
                    description = $5, retry_count = $6, created_at = NOW()
                """,
                user_id,
                data.transaction_type.value if data.transaction_type else None,
                data.category,
                data.amount,
                data.description,
                data.retry_count,
            )
        logger.info("Saved partial transaction data: user_id=%d", user_id)

    async def load(self, user_id: int) -> Optional[PartialTransactionData]:
        async with self.pool.acquire() as conn:
            record = await conn.fetchrow(
                """
                SELECT user_id, transaction_type, category, amount, description,
                       retry_count, created_at
                FROM partial_transactions
                WHERE user_id = $1
                  AND created_at > NOW() - make_interval(mins => $2)
                """,
                user_id,
                self.ttl_minutes,
            )
        if record is None:
            return None
        return PartialTransactionData.from_record(record)

    async def exists(self, user_id: int) -> bool:
        """True if a row is stored, expired or not."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM partial_transactions WHERE user_id = $1)", user_id
            )

    async def clear(self, user_id: int) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM partial_transactions WHERE user_id = $1", user_id)
        logger.info("Cleared partial transaction data: user_id=%d", user_id)
