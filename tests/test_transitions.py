"""Tests for manual approve/reject decisions."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from catatbot.database.models import ApprovalStats, ApprovalStatus, Transaction, TransactionType
from catatbot.services.transitions import ApprovalTransitionManager, TransitionOutcome

SUBMITTER_ID = 1001


def make_pending(tx_id: str = "tx-1", **changes) -> Transaction:
    fields = dict(
        id=tx_id,
        user_id=SUBMITTER_ID,
        type=TransactionType.EXPENSE,
        category="Office Supplies",
        amount=Decimal("15000000"),
        timestamp=datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc),
        approval_status=ApprovalStatus.PENDING,
        description="Printer",
    )
    fields.update(changes)
    return Transaction(**fields)


class TestApprovalTransitionManager:
    """Test cases for ApprovalTransitionManager."""

    async def test_approve_pending(self, transitions, repository, notifier):
        repository.add(make_pending())

        result = await transitions.approve("tx-1", approver_id=9001)

        assert result.outcome == TransitionOutcome.APPROVED
        assert result.succeeded is True
        stored = repository.transactions["tx-1"]
        assert stored.approval_status == ApprovalStatus.APPROVED
        assert stored.approver_id == 9001
        assert stored.approved_at is not None
        [message] = notifier.messages_for(SUBMITTER_ID)
        assert "Disetujui" in message

    async def test_reject_with_reason(self, transitions, repository, notifier):
        repository.add(make_pending())

        result = await transitions.reject("tx-1", approver_id=9001, reason="nota tidak ada")

        assert result.outcome == TransitionOutcome.REJECTED
        assert repository.transactions["tx-1"].rejection_reason == "nota tidak ada"
        [message] = notifier.messages_for(SUBMITTER_ID)
        assert "nota tidak ada" in message

    async def test_not_found(self, transitions, notifier):
        result = await transitions.approve("missing", approver_id=9001)

        assert result.outcome == TransitionOutcome.NOT_FOUND
        assert result.transaction is None
        assert notifier.sent == []

    async def test_already_decided_is_not_overwritten(self, transitions, repository, notifier):
        repository.add(make_pending(approval_status=ApprovalStatus.REJECTED, approver_id=7))

        result = await transitions.approve("tx-1", approver_id=9001)

        assert result.outcome == TransitionOutcome.ALREADY_PROCESSED
        assert result.transaction.approval_status == ApprovalStatus.REJECTED
        assert repository.transactions["tx-1"].approver_id == 7
        assert notifier.sent == []

    async def test_concurrent_approvals_single_winner(self, transitions, repository, notifier):
        repository.add(make_pending())

        results = await asyncio.gather(
            transitions.approve("tx-1", approver_id=9001),
            transitions.approve("tx-1", approver_id=9002),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["already_processed", "approved"]
        assert repository.transactions["tx-1"].approver_id in (9001, 9002)
        assert len(notifier.messages_for(SUBMITTER_ID)) == 1

    async def test_concurrent_approve_and_reject(self, transitions, repository):
        repository.add(make_pending())

        results = await asyncio.gather(
            transitions.approve("tx-1", approver_id=9001),
            transitions.reject("tx-1", approver_id=9002, reason="duplikat"),
        )

        assert sum(r.succeeded for r in results) == 1
        final = repository.transactions["tx-1"]
        winner = next(r for r in results if r.succeeded)
        assert final.approval_status.value == winner.outcome.value

    async def test_lost_compare_and_swap(self):
        """Test the path where the status changes between read and write."""
        repository = MagicMock()
        repository.get_by_id = AsyncMock(side_effect=[
            make_pending(),
            make_pending(approval_status=ApprovalStatus.APPROVED, approver_id=9002),
        ])
        repository.update_approval_status = AsyncMock(return_value=False)
        notifier = MagicMock()
        manager = ApprovalTransitionManager(repository, notifier)

        result = await manager.approve("tx-1", approver_id=9001)

        assert result.outcome == TransitionOutcome.ALREADY_PROCESSED
        assert result.transaction.approver_id == 9002
        repository.update_approval_status.assert_awaited_once_with(
            "tx-1", ApprovalStatus.PENDING, ApprovalStatus.APPROVED, 9001, None
        )
        notifier.notify.assert_not_called()

    async def test_list_pending(self, transitions, repository):
        repository.add(make_pending("a"))
        repository.add(make_pending("b", approval_status=ApprovalStatus.APPROVED))

        pending = await transitions.list_pending()

        assert [t.id for t in pending] == ["a"]

    async def test_get(self, transitions, repository):
        repository.add(make_pending("a"))

        assert (await transitions.get("a")).description == "Printer"
        assert await transitions.get("missing") is None


class TestApprovalStats:

    async def test_counts_today_in_business_timezone(self, repository, notifier):
        # 12:00 in Makassar, the local day began at 16:00 UTC the day before
        now = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)
        today = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)
        before_midnight = datetime(2026, 10, 18, 15, 59, tzinfo=timezone.utc)
        decided = dict(approval_status=ApprovalStatus.APPROVED, approved_at=today)
        repository.add(make_pending("p1"))
        repository.add(make_pending("p2"))
        repository.add(make_pending("manual", approver_id=9001, **decided))
        repository.add(make_pending("auto", **decided))
        repository.add(make_pending("auto-yesterday", approval_status=ApprovalStatus.APPROVED,
                                    approved_at=before_midnight))
        repository.add(make_pending("rejected", approval_status=ApprovalStatus.REJECTED,
                                    approver_id=9001, approved_at=today))
        transitions = ApprovalTransitionManager(repository, notifier, clock=lambda: now)

        stats = await transitions.stats()

        assert stats == ApprovalStats(
            pending=2, approved_today=1, auto_approved_today=1, rejected_today=1
        )

    async def test_empty(self, transitions):
        assert await transitions.stats() == ApprovalStats()
