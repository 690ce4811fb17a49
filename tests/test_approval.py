"""Unit tests for approval scoring."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from catatbot.database.models import (
    ApprovalStatus,
    Transaction,
    TransactionCandidate,
    TransactionType,
)
from catatbot.services.approval import (
    RULES,
    ApprovalScorer,
    HistoryView,
    analyze,
    has_suspicious_keywords,
    is_duplicate,
    is_similar_amount,
    start_of_day,
)
from tests.fakes import InMemoryTransactionRepository

USER_ID = 42
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=ZoneInfo("Asia/Makassar"))


def make_candidate(**changes) -> TransactionCandidate:
    base = TransactionCandidate(
        user_id=USER_ID,
        type=TransactionType.EXPENSE,
        category="Food",
        amount=Decimal("50000"),
        description="Lunch",
    )
    return replace(base, **changes)


def make_transaction(minutes_ago: int = 2, **changes) -> Transaction:
    base = Transaction(
        id="tx-1",
        user_id=USER_ID,
        type=TransactionType.EXPENSE,
        category="Food",
        amount=Decimal("50000"),
        timestamp=NOW - timedelta(minutes=minutes_ago),
        approval_status=ApprovalStatus.APPROVED,
        description="Lunch",
    )
    return replace(base, **changes)


@pytest.fixture
def clean_history():
    return HistoryView(now=NOW)


class TestAnalyze:
    """Test cases for the pure scoring function."""

    def test_clean_candidate_is_approved(self, clean_history):
        analysis = analyze(make_candidate(), clean_history)

        assert analysis.confidence_score == 0
        assert analysis.status == ApprovalStatus.APPROVED
        assert analysis.requires_manual_approval is False
        assert analysis.reasons == ()

    def test_ceiling_amount_requires_approval(self, clean_history):
        analysis = analyze(make_candidate(amount=Decimal("10000000")), clean_history)

        assert analysis.confidence_score == 0
        assert analysis.requires_manual_approval is True
        assert analysis.reasons == ("large amount",)

    def test_one_below_ceiling_auto_approves(self, clean_history):
        analysis = analyze(make_candidate(amount=Decimal("9999999")), clean_history)

        assert analysis.status == ApprovalStatus.APPROVED

    def test_unrealistic_amount(self, clean_history):
        candidate = make_candidate(
            category="Office Supplies", amount=Decimal("150000000"), description="renovation"
        )
        analysis = analyze(candidate, clean_history)

        assert analysis.flags.is_unrealistic_amount is True
        assert analysis.confidence_score == 40
        assert analysis.status == ApprovalStatus.PENDING

    def test_weights_accumulate(self):
        history = HistoryView(
            now=NOW,
            recent=(make_transaction(amount=Decimal("150000000")),),
            daily_count=51,
            daily_total=Decimal("60000000"),
            rapid_count=5,
        )
        candidate = make_candidate(amount=Decimal("150000000"), description="test")

        analysis = analyze(candidate, history)

        # every rule except lacks_description fires ("test" is 4 characters)
        assert analysis.confidence_score == 30 + 40 + 20 + 25 + 15 + 10
        assert analysis.flags.lacks_description is False
        assert len(analysis.reasons) == 7  # six rules + large amount

    @pytest.mark.parametrize("candidate_changes, history_changes, flag", [
        ({}, {"recent": (make_transaction(),)}, "is_duplicate"),
        ({"amount": Decimal("100000001")}, {}, "is_unrealistic_amount"),
        ({}, {"daily_count": 51}, "exceeds_daily_limit"),
        ({}, {"daily_total": Decimal("50000001")}, "exceeds_daily_amount_limit"),
        ({}, {"rapid_count": 3}, "rapid_successive_transactions"),
        ({"description": "dummy entry"}, {}, "has_suspicious_keywords"),
        ({"description": "ab"}, {}, "lacks_description"),
        ({"description": None}, {}, "lacks_description"),
    ])
    def test_any_signal_forces_manual_approval(
        self, clean_history, candidate_changes, history_changes, flag
    ):
        """Test that adding one signal to a clean candidate raises the score."""
        baseline = analyze(make_candidate(), clean_history)
        flagged = analyze(make_candidate(**candidate_changes), replace(clean_history, **history_changes))

        assert getattr(flagged.flags, flag) is True
        assert flagged.confidence_score > baseline.confidence_score
        assert flagged.requires_manual_approval is True

    def test_daily_limits_are_strict(self, clean_history):
        history = replace(clean_history, daily_count=50, daily_total=Decimal("50000000"))
        analysis = analyze(make_candidate(), history)

        assert analysis.flags.exceeds_daily_limit is False
        assert analysis.flags.exceeds_daily_amount_limit is False

    def test_rapid_threshold_is_inclusive(self, clean_history):
        assert analyze(make_candidate(), replace(clean_history, rapid_count=2)).confidence_score == 0
        assert analyze(make_candidate(), replace(clean_history, rapid_count=3)).confidence_score == 15

    def test_every_rule_has_a_positive_weight(self):
        assert all(rule.weight > 0 for rule in RULES)


class TestDuplicateRule:

    def test_similar_amount_band(self):
        assert is_similar_amount(Decimal("51000"), Decimal("50000")) is True
        assert is_similar_amount(Decimal("48000"), Decimal("50000")) is True
        assert is_similar_amount(Decimal("55000"), Decimal("50000")) is False
        assert is_similar_amount(Decimal("45000"), Decimal("50000")) is False
        assert is_similar_amount(Decimal("1"), Decimal("0")) is False

    def test_same_category_within_window(self):
        history = HistoryView(now=NOW, recent=(make_transaction(minutes_ago=2),))
        assert is_duplicate(make_candidate(amount=Decimal("51000")), history) is True

    def test_outside_window(self):
        history = HistoryView(now=NOW, recent=(make_transaction(minutes_ago=6),))
        assert is_duplicate(make_candidate(), history) is False

    def test_other_category(self):
        history = HistoryView(now=NOW, recent=(make_transaction(category="Gaji"),))
        assert is_duplicate(make_candidate(), history) is False

    def test_other_type(self):
        history = HistoryView(now=NOW, recent=(make_transaction(type=TransactionType.INCOME),))
        assert is_duplicate(make_candidate(), history) is False

    def test_other_user(self):
        history = HistoryView(now=NOW, recent=(make_transaction(user_id=USER_ID + 1),))
        assert is_duplicate(make_candidate(), history) is False


class TestSuspiciousKeywords:

    @pytest.mark.parametrize("description", [
        "test", "Testing payment", "DUMMY", "coba dulu", "tes tes",
    ])
    def test_keywords_match(self, description, clean_history):
        assert has_suspicious_keywords(make_candidate(description=description), clean_history)

    @pytest.mark.parametrize("description", [
        "test123", "dummy_data", "testdata", "pentest",
    ])
    def test_keywords_inside_words(self, description, clean_history):
        assert has_suspicious_keywords(make_candidate(description=description), clean_history)

    @pytest.mark.parametrize("description", [
        "Lunch", "makan siang", "Printer kantor", None,
    ])
    def test_clean_descriptions(self, description, clean_history):
        assert not has_suspicious_keywords(make_candidate(description=description), clean_history)


class TestStartOfDay:

    def test_uses_business_timezone(self):
        # 01:00 UTC is 09:00 in Makassar (UTC+8)
        now = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)
        start = start_of_day(now, "Asia/Makassar")

        assert start == datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)

    def test_late_utc_evening_is_next_local_day(self):
        now = datetime(2026, 10, 19, 17, 0, tzinfo=timezone.utc)
        start = start_of_day(now, "Asia/Makassar")

        assert start == datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)


class TestApprovalScorer:
    """Scenario tests against an in-memory transaction history."""

    @pytest.fixture
    def repository(self):
        return InMemoryTransactionRepository(clock=lambda: NOW)

    @pytest.fixture
    def scorer(self, repository):
        return ApprovalScorer(repository, clock=lambda: NOW)

    async def test_no_history_auto_approves(self, scorer):
        analysis = await scorer.analyze_transaction(make_candidate())

        assert analysis.status == ApprovalStatus.APPROVED
        assert analysis.confidence_score == 0

    async def test_immediate_resubmission_is_duplicate(self, scorer, repository):
        repository.add(make_transaction(minutes_ago=2))

        analysis = await scorer.analyze_transaction(make_candidate(amount=Decimal("51000")))

        assert analysis.flags.is_duplicate is True
        assert analysis.confidence_score == 30
        assert analysis.status == ApprovalStatus.PENDING

    async def test_history_aggregates(self, scorer, repository):
        repository.add(make_transaction(minutes_ago=3, id="a", category="Gaji"))
        repository.add(make_transaction(minutes_ago=4, id="b", category="Gaji"))
        repository.add(make_transaction(minutes_ago=60, id="c", category="Gaji"))
        repository.add(make_transaction(minutes_ago=60 * 24, id="yesterday"))

        history = await scorer.load_history(USER_ID)

        assert history.daily_count == 3
        assert history.daily_total == Decimal("150000")
        assert history.rapid_count == 2
        assert {tx.id for tx in history.recent} == {"a", "b"}

    async def test_rapid_succession_from_history(self, scorer, repository):
        for i in range(3):
            repository.add(make_transaction(minutes_ago=1, id=f"r{i}", category="Gaji"))

        analysis = await scorer.analyze_transaction(make_candidate())

        assert analysis.flags.rapid_successive_transactions is True
        assert analysis.flags.is_duplicate is False
        assert analysis.confidence_score == 15

    async def test_daily_count_limit_from_history(self, scorer, repository):
        for i in range(51):
            repository.add(make_transaction(minutes_ago=30 + i, id=f"d{i}", category="Gaji"))

        analysis = await scorer.analyze_transaction(make_candidate())

        assert analysis.flags.exceeds_daily_limit is True
