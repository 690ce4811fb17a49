"""
Submission of a confirmed transaction: score it, persist it, tell approvers.

Anything that goes wrong talking to PostgreSQL (driver errors, dropped
connections, timeouts) comes out of process() as TransientPersistenceError
so the workflow can hand it to the recovery manager. Constraint and data
errors come out as ValidationError since retrying cannot fix them. Nothing
is retried here.
"""

import asyncio
import logging
from typing import Iterable, Optional

import asyncpg

from catatbot.database.models import (
    ApprovalAnalysis,
    DailyTotals,
    Transaction,
    TransactionCandidate,
)
from catatbot.errors import TransientPersistenceError, ValidationError
from catatbot.services.approval import ApprovalScorer, start_of_day
from catatbot.utils.formatters import format_approval_request

logger = logging.getLogger(__name__)

REJECTED_ERRORS = (asyncpg.IntegrityConstraintViolationError, asyncpg.DataError)
TRANSIENT_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class TransactionProcessor:

    def __init__(
        self,
        repository,
        scorer: ApprovalScorer,
        notifier,
        approver_ids: Iterable[int] = (),
        timeout: float = 10.0,
    ):
        self.repository = repository
        self.scorer = scorer
        self.notifier = notifier
        self.approver_ids = set(approver_ids)
        self.timeout = timeout

    async def process(self, candidate: TransactionCandidate) -> tuple[Transaction, ApprovalAnalysis]:
        try:
            analysis = await asyncio.wait_for(
                self.scorer.analyze_transaction(candidate), self.timeout
            )
            transaction = await asyncio.wait_for(
                self.repository.create(candidate, analysis), self.timeout
            )
        except REJECTED_ERRORS as e:
            logger.error("Database rejected transaction for user_id=%d: %r", candidate.user_id, e)
            raise ValidationError(str(e) or type(e).__name__) from e
        except TRANSIENT_ERRORS as e:
            logger.error("Failed to save transaction for user_id=%d: %r", candidate.user_id, e)
            raise TransientPersistenceError(str(e) or type(e).__name__) from e

        if analysis.requires_manual_approval:
            self._request_approval(transaction, analysis)
        return transaction, analysis

    async def daily_totals(self, user_id: int) -> Optional[DailyTotals]:
        """Today's totals for the success reply. Best-effort: None on failure."""
        since = start_of_day(self.scorer.clock())
        try:
            return await asyncio.wait_for(
                self.repository.daily_totals(user_id, since), self.timeout
            )
        except TRANSIENT_ERRORS as e:
            logger.error("Error getting daily totals for user_id=%d: %r", user_id, e)
            return None

    def _request_approval(self, transaction: Transaction, analysis: ApprovalAnalysis) -> None:
        if not self.approver_ids:
            logger.warning("Transaction %s needs approval but no approvers are configured",
                           transaction.id)
            return
        message = format_approval_request(transaction, analysis)
        for approver_id in self.approver_ids:
            self.notifier.notify(approver_id, message)
