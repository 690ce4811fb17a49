"""
Transaction repository over the `transactions` table.

update_approval_status() is the compare-and-swap primitive behind manual
approval: the WHERE clause on the current status makes a second concurrent
decision a no-op instead of an overwrite.
"""

import logging
from datetime import datetime
from typing import Optional

import asyncpg

from catatbot.database.models import (
    ApprovalAnalysis,
    ApprovalStats,
    ApprovalStatus,
    DailyTotals,
    Transaction,
    TransactionCandidate,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, user_id, type, category, amount, description, timestamp, approval_status, "
    "approver_id, approved_at, rejection_reason, confidence_score, approval_reason"
)


class PostgresTransactionRepository:

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create(
        self,
        candidate: TransactionCandidate,
        analysis: ApprovalAnalysis,
    ) -> Transaction:
        """Insert a candidate with the status the scoring engine assigned."""
        async with self.pool.acquire() as conn:
            record = await conn.fetchrow(
                f"""
                INSERT INTO transactions
                    (user_id, type, category, amount, description,
                     approval_status, approved_at, confidence_score, approval_reason)
                VALUES
                    ($1, $2, $3, $4, $5, $6,
                     CASE WHEN $6 = 'approved' THEN NOW() END, $7, $8)
                RETURNING {_COLUMNS}
                """,
                candidate.user_id,
                candidate.type.value,
                candidate.category,
                candidate.amount,
                candidate.description,
                analysis.status.value,
                analysis.confidence_score,
                ", ".join(analysis.reasons) or None,
            )
        transaction = Transaction.from_record(record)
        logger.info(
            "Transaction saved: %s status=%s score=%d",
            transaction.id, transaction.approval_status.value, transaction.confidence_score,
        )
        return transaction

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        async with self.pool.acquire() as conn:
            try:
                record = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM transactions WHERE id = $1::uuid",
                    transaction_id,
                )
            except asyncpg.DataError:
                # Not a valid UUID
                return None
        return Transaction.from_record(record) if record else None

    async def find_recent_by_user(self, user_id: int, since: datetime) -> list[Transaction]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM transactions "
                "WHERE user_id = $1 AND timestamp >= $2 "
                "ORDER BY timestamp DESC",
                user_id,
                since,
            )
        return [Transaction.from_record(row) for row in rows]

    async def count_recent_by_user(self, user_id: int, since: datetime) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM transactions WHERE user_id = $1 AND timestamp >= $2",
                user_id,
                since,
            )
        return count or 0

    async def update_approval_status(
        self,
        transaction_id: str,
        expected: ApprovalStatus,
        new: ApprovalStatus,
        approver_id: int,
        reason: Optional[str] = None,
    ) -> bool:
        """Atomically move `expected` → `new`. Returns False if the status had changed."""
        async with self.pool.acquire() as conn:
            updated_id = await conn.fetchval(
                """
                UPDATE transactions
                SET approval_status = $3, approver_id = $4, approved_at = NOW(),
                    rejection_reason = $5
                WHERE id = $1::uuid AND approval_status = $2
                RETURNING id
                """,
                transaction_id,
                expected.value,
                new.value,
                approver_id,
                reason,
            )
        if updated_id is None:
            logger.info("Approval CAS lost: %s expected=%s", transaction_id, expected.value)
            return False
        return True

    async def list_pending(self, limit: int = 20) -> list[Transaction]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM transactions "
                "WHERE approval_status = 'pending' "
                "ORDER BY timestamp DESC LIMIT $1",
                limit,
            )
        return [Transaction.from_record(row) for row in rows]

    async def daily_totals(self, user_id: int, since: datetime) -> DailyTotals:
        """Income, expense and count of a user's transactions since `since`, any status."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COALESCE(SUM(amount) FILTER (WHERE type = 'income'), 0)  AS income,
                    COALESCE(SUM(amount) FILTER (WHERE type = 'expense'), 0) AS expense,
                    COUNT(*)                                                 AS count
                FROM transactions
                WHERE user_id = $1 AND timestamp >= $2
                """,
                user_id,
                since,
            )
        return DailyTotals(income=row["income"], expense=row["expense"], count=row["count"])

    async def approval_stats(self, since: datetime) -> ApprovalStats:
        """Pending count plus decisions made since `since`.

        Auto-approved rows are the approved ones without an approver.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COUNT(*) FILTER (WHERE approval_status = 'pending') AS pending,
                    COUNT(*) FILTER (WHERE approval_status = 'approved' AND approved_at >= $1
                                     AND approver_id IS NOT NULL)       AS approved_today,
                    COUNT(*) FILTER (WHERE approval_status = 'approved' AND approved_at >= $1
                                     AND approver_id IS NULL)           AS auto_approved_today,
                    COUNT(*) FILTER (WHERE approval_status = 'rejected'
                                     AND approved_at >= $1)             AS rejected_today
                FROM transactions
                """,
                since,
            )
        return ApprovalStats(
            pending=row["pending"],
            approved_today=row["approved_today"],
            auto_approved_today=row["auto_approved_today"],
            rejected_today=row["rejected_today"],
        )
