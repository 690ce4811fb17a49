"""
Manual approve/reject of pending transactions.

Each decision is a single conditional UPDATE (pending → approved/rejected).
When two approvers race on the same transaction, the database lets exactly
one UPDATE match; the other caller gets ALREADY_PROCESSED and the recorded
approver is never overwritten.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from catatbot.config import TIMEZONE
from catatbot.database.models import ApprovalStats, ApprovalStatus, Transaction
from catatbot.services.approval import start_of_day
from catatbot.utils.formatters import format_decision_notification

logger = logging.getLogger(__name__)


class TransitionOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ALREADY_PROCESSED = "already_processed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    transaction: Optional[Transaction] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (TransitionOutcome.APPROVED, TransitionOutcome.REJECTED)


class ApprovalTransitionManager:

    def __init__(self, repository, notifier, clock: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or (lambda: datetime.now(ZoneInfo(TIMEZONE)))

    async def approve(self, transaction_id: str, approver_id: int) -> TransitionResult:
        logger.info("Manually approving transaction %s by approver_id=%d",
                    transaction_id, approver_id)
        return await self._transition(transaction_id, approver_id, ApprovalStatus.APPROVED)

    async def reject(
        self,
        transaction_id: str,
        approver_id: int,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        logger.info("Manually rejecting transaction %s by approver_id=%d reason=%r",
                    transaction_id, approver_id, reason)
        return await self._transition(
            transaction_id, approver_id, ApprovalStatus.REJECTED, reason
        )

    async def list_pending(self, limit: int = 20) -> list[Transaction]:
        return await self.repository.list_pending(limit)

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        return await self.repository.get_by_id(transaction_id)

    async def stats(self) -> ApprovalStats:
        """Queue size and today's decisions in the business timezone."""
        return await self.repository.approval_stats(start_of_day(self.clock()))

    async def _transition(
        self,
        transaction_id: str,
        approver_id: int,
        new_status: ApprovalStatus,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        transaction = await self.repository.get_by_id(transaction_id)
        if transaction is None:
            return TransitionResult(TransitionOutcome.NOT_FOUND)

        if transaction.approval_status != ApprovalStatus.PENDING:
            return TransitionResult(TransitionOutcome.ALREADY_PROCESSED, transaction)

        swapped = await self.repository.update_approval_status(
            transaction_id, ApprovalStatus.PENDING, new_status, approver_id, reason
        )
        if not swapped:
            # Another approver got there between our read and our write
            current = await self.repository.get_by_id(transaction_id)
            return TransitionResult(TransitionOutcome.ALREADY_PROCESSED, current or transaction)

        decided = await self.repository.get_by_id(transaction_id) or transaction
        logger.info("Transaction %s %s by approver_id=%d",
                    transaction_id, new_status.value, approver_id)
        self.notifier.notify(decided.user_id, format_decision_notification(decided))

        outcome = (
            TransitionOutcome.APPROVED
            if new_status == ApprovalStatus.APPROVED
            else TransitionOutcome.REJECTED
        )
        return TransitionResult(outcome, decided)
