"""Tests for TransactionProcessor."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from catatbot.database.models import (
    ApprovalStatus,
    DailyTotals,
    Transaction,
    TransactionCandidate,
    TransactionType,
)
from catatbot.errors import TransientPersistenceError, ValidationError
from catatbot.services.approval import ApprovalScorer
from catatbot.services.processor import TransactionProcessor
from tests.conftest import APPROVER_ID
from tests.fakes import FlakyTransactionRepository, InMemoryTransactionRepository, RecordingNotifier


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=ZoneInfo("Asia/Makassar"))

@pytest.fixture
def candidate():
    return TransactionCandidate(
        user_id=1,
        type=TransactionType.EXPENSE,
        category="Food",
        amount=Decimal("50000"),
        description="Lunch",
    )


class TestTransactionProcessor:
    """Test cases for TransactionProcessor."""

    async def test_approved_transaction_not_escalated(self, processor, candidate, notifier):
        transaction, analysis = await processor.process(candidate)

        assert transaction.approval_status == ApprovalStatus.APPROVED
        assert analysis.confidence_score == 0
        assert notifier.sent == []

    async def test_pending_transaction_notifies_every_approver(self, candidate):
        repository = InMemoryTransactionRepository()
        notifier = RecordingNotifier()
        processor = TransactionProcessor(
            repository, ApprovalScorer(repository), notifier, approver_ids=[7, 8]
        )

        transaction, _ = await processor.process(
            TransactionCandidate(1, TransactionType.EXPENSE, "Food", Decimal("20000000"), "Catering")
        )

        assert transaction.approval_status == ApprovalStatus.PENDING
        assert sorted(target for target, _ in notifier.sent) == [7, 8]
        assert "large amount" in notifier.sent[0][1]

    async def test_pending_without_approvers(self, candidate):
        repository = InMemoryTransactionRepository()
        notifier = RecordingNotifier()
        processor = TransactionProcessor(repository, ApprovalScorer(repository), notifier)

        await processor.process(
            TransactionCandidate(1, TransactionType.EXPENSE, "Food", Decimal("20000000"), "Catering")
        )

        assert notifier.sent == []

    async def test_connection_error_is_transient(self, candidate, notifier):
        repository = FlakyTransactionRepository(failures=1)
        processor = TransactionProcessor(repository, ApprovalScorer(repository), notifier)

        with pytest.raises(TransientPersistenceError, match="connection reset"):
            await processor.process(candidate)

    async def test_history_query_failure_is_transient(self, candidate, notifier):
        repository = MagicMock()
        repository.find_recent_by_user = AsyncMock(
            side_effect=asyncpg.InterfaceError("connection is closed")
        )
        repository.count_recent_by_user = AsyncMock(return_value=0)
        processor = TransactionProcessor(repository, ApprovalScorer(repository), notifier)

        with pytest.raises(TransientPersistenceError):
            await processor.process(candidate)

    async def test_timeout_is_transient(self, candidate, notifier):
        repository = InMemoryTransactionRepository()

        async def slow_create(candidate, analysis):
            await asyncio.sleep(1)

        repository.create = slow_create
        processor = TransactionProcessor(
            repository, ApprovalScorer(repository), notifier, timeout=0.01
        )

        with pytest.raises(TransientPersistenceError, match="TimeoutError"):
            await processor.process(candidate)

    async def test_constraint_violation_is_not_transient(self, candidate, notifier):
        repository = InMemoryTransactionRepository()
        repository.create = AsyncMock(
            side_effect=asyncpg.CheckViolationError("new row violates check constraint")
        )
        processor = TransactionProcessor(repository, ApprovalScorer(repository), notifier)

        with pytest.raises(ValidationError):
            await processor.process(candidate)

    async def test_unexpected_errors_propagate(self, candidate, notifier):
        repository = InMemoryTransactionRepository()
        repository.create = AsyncMock(side_effect=KeyError("bug"))
        processor = TransactionProcessor(repository, ApprovalScorer(repository), notifier)

        with pytest.raises(KeyError):
            await processor.process(candidate)

    def test_approver_ids_copied(self):
        approvers = {APPROVER_ID}
        processor = TransactionProcessor(MagicMock(), MagicMock(), MagicMock(), approver_ids=approvers)
        approvers.add(5)

        assert processor.approver_ids == {APPROVER_ID}


class TestDailyTotals:

    @pytest.fixture
    def repository(self):
        repository = InMemoryTransactionRepository(clock=lambda: NOW)
        for tx_id, tx_type, amount, at in [
            ("sale", TransactionType.INCOME, "300000", NOW - timedelta(hours=2)),
            ("lunch", TransactionType.EXPENSE, "50000", NOW - timedelta(hours=1)),
            ("other-user", TransactionType.EXPENSE, "75000", NOW),
            ("yesterday", TransactionType.INCOME, "999000", NOW - timedelta(days=1)),
        ]:
            repository.add(Transaction(
                id=tx_id,
                user_id=2 if tx_id == "other-user" else 1,
                type=tx_type,
                category="Food",
                amount=Decimal(amount),
                timestamp=at,
            ))
        return repository

    async def test_totals_since_local_midnight(self, repository, notifier):
        processor = TransactionProcessor(
            repository, ApprovalScorer(repository, clock=lambda: NOW), notifier
        )

        totals = await processor.daily_totals(1)

        assert totals == DailyTotals(
            income=Decimal("300000"), expense=Decimal("50000"), count=2
        )
        assert totals.net == Decimal("250000")

    async def test_lookup_failure_gives_none(self, repository, notifier):
        repository.daily_totals = AsyncMock(
            side_effect=asyncpg.InterfaceError("connection is closed")
        )
        processor = TransactionProcessor(repository, ApprovalScorer(repository), notifier)

        assert await processor.daily_totals(1) is None
