"""
Approval scoring: decides whether a transaction is auto-approved or waits
for a human.

Each risk signal is an ApprovalRule: a pure predicate over the candidate and
an immutable HistoryView, plus the weight it adds to the score. All rules
are always evaluated and their weights summed; a transaction is approved
only when no rule fires and the amount is below the auto-approve ceiling.

The history is loaded once per submission (three read-only queries) and is
best-effort: a burst of submissions racing each other may each see slightly
stale counts. Empty history scores as clean.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from catatbot.config import (
    AMOUNT_SIMILARITY_THRESHOLD,
    DUPLICATE_WINDOW_MINUTES,
    MAX_AUTO_APPROVE_AMOUNT,
    MAX_DAILY_AMOUNT_PER_USER,
    MAX_DAILY_TRANSACTIONS_PER_USER,
    MIN_DESCRIPTION_LENGTH,
    RAPID_TRANSACTION_THRESHOLD,
    RAPID_WINDOW_MINUTES,
    SUSPICIOUS_KEYWORDS,
    TIMEZONE,
    UNREALISTIC_AMOUNT_THRESHOLD,
    WEIGHT_DAILY_AMOUNT_LIMIT,
    WEIGHT_DAILY_LIMIT,
    WEIGHT_DUPLICATE,
    WEIGHT_LACKS_DESCRIPTION,
    WEIGHT_RAPID_SUCCESSION,
    WEIGHT_SUSPICIOUS_KEYWORDS,
    WEIGHT_UNREALISTIC_AMOUNT,
)
from catatbot.database.models import (
    ApprovalAnalysis,
    ApprovalFlags,
    ApprovalStatus,
    Transaction,
    TransactionCandidate,
)

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class HistoryView:
    """Point-in-time aggregates of a user's earlier transactions."""
    now: datetime
    recent: tuple[Transaction, ...] = ()   # within the duplicate window
    daily_count: int = 0
    daily_total: Decimal = Decimal("0")
    rapid_count: int = 0


@dataclass(frozen=True)
class ApprovalRule:
    flag: str                 # ApprovalFlags field set when the rule fires
    weight: int
    reason: str
    predicate: Callable[[TransactionCandidate, HistoryView], bool]

    def applies(self, candidate: TransactionCandidate, history: HistoryView) -> bool:
        return self.predicate(candidate, history)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def is_similar_amount(amount: Decimal, other: Decimal) -> bool:
    """True when amount/other lies within [threshold, 1/threshold]."""
    if other <= 0:
        return False
    ratio = amount / other
    return AMOUNT_SIMILARITY_THRESHOLD <= ratio <= 1 / AMOUNT_SIMILARITY_THRESHOLD


def is_duplicate(candidate: TransactionCandidate, history: HistoryView) -> bool:
    window_start = history.now - timedelta(minutes=DUPLICATE_WINDOW_MINUTES)
    return any(
        tx.user_id == candidate.user_id
        and tx.type == candidate.type
        and tx.category == candidate.category
        and tx.timestamp >= window_start
        and is_similar_amount(candidate.amount, tx.amount)
        for tx in history.recent
    )


def is_unrealistic_amount(candidate: TransactionCandidate, history: HistoryView) -> bool:
    return candidate.amount > UNREALISTIC_AMOUNT_THRESHOLD


def exceeds_daily_limit(candidate: TransactionCandidate, history: HistoryView) -> bool:
    return history.daily_count > MAX_DAILY_TRANSACTIONS_PER_USER


def exceeds_daily_amount_limit(candidate: TransactionCandidate, history: HistoryView) -> bool:
    return history.daily_total > MAX_DAILY_AMOUNT_PER_USER


def is_rapid_succession(candidate: TransactionCandidate, history: HistoryView) -> bool:
    return history.rapid_count >= RAPID_TRANSACTION_THRESHOLD


def has_suspicious_keywords(candidate: TransactionCandidate, history: HistoryView) -> bool:
    if not candidate.description:
        return False
    text = candidate.description.lower()
    return any(keyword in text for keyword in SUSPICIOUS_KEYWORDS)


def lacks_description(candidate: TransactionCandidate, history: HistoryView) -> bool:
    return not candidate.description or len(candidate.description.strip()) < MIN_DESCRIPTION_LENGTH


RULES: tuple[ApprovalRule, ...] = (
    ApprovalRule("is_duplicate", WEIGHT_DUPLICATE, "duplicate detected", is_duplicate),
    ApprovalRule("is_unrealistic_amount", WEIGHT_UNREALISTIC_AMOUNT, "unrealistic amount",
                 is_unrealistic_amount),
    ApprovalRule("exceeds_daily_limit", WEIGHT_DAILY_LIMIT, "daily limit exceeded",
                 exceeds_daily_limit),
    ApprovalRule("exceeds_daily_amount_limit", WEIGHT_DAILY_AMOUNT_LIMIT,
                 "daily amount limit exceeded", exceeds_daily_amount_limit),
    ApprovalRule("rapid_successive_transactions", WEIGHT_RAPID_SUCCESSION, "rapid transactions",
                 is_rapid_succession),
    ApprovalRule("has_suspicious_keywords", WEIGHT_SUSPICIOUS_KEYWORDS, "suspicious keywords",
                 has_suspicious_keywords),
    ApprovalRule("lacks_description", WEIGHT_LACKS_DESCRIPTION, "lacks description",
                 lacks_description),
)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def analyze(
    candidate: TransactionCandidate,
    history: HistoryView,
    rules: tuple[ApprovalRule, ...] = RULES,
) -> ApprovalAnalysis:
    """Score a candidate against every rule and classify it."""
    fired = [rule for rule in rules if rule.applies(candidate, history)]
    score = sum(rule.weight for rule in fired)
    flags = ApprovalFlags(**{rule.flag: True for rule in fired})
    reasons = tuple(rule.reason for rule in fired)

    if score == 0 and candidate.amount < MAX_AUTO_APPROVE_AMOUNT:
        status = ApprovalStatus.APPROVED
    else:
        status = ApprovalStatus.PENDING
        if candidate.amount >= MAX_AUTO_APPROVE_AMOUNT:
            reasons = reasons + ("large amount",)

    return ApprovalAnalysis(
        flags=flags,
        confidence_score=score,
        status=status,
        reasons=reasons,
    )


def start_of_day(now: datetime, tz_name: str = TIMEZONE) -> datetime:
    """Midnight of `now`'s calendar day in the business timezone."""
    local = now.astimezone(ZoneInfo(tz_name))
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


class ApprovalScorer:
    """Loads a user's history from the repository and scores candidates."""

    def __init__(self, repository, clock: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self.clock = clock or (lambda: datetime.now(ZoneInfo(TIMEZONE)))

    async def load_history(self, user_id: int) -> HistoryView:
        now = self.clock()
        day_start = start_of_day(now)
        duplicate_start = now - timedelta(minutes=DUPLICATE_WINDOW_MINUTES)
        rapid_start = now - timedelta(minutes=RAPID_WINDOW_MINUTES)

        today, recent, rapid_count = await asyncio.gather(
            self.repository.find_recent_by_user(user_id, day_start),
            self.repository.find_recent_by_user(user_id, duplicate_start),
            self.repository.count_recent_by_user(user_id, rapid_start),
        )
        today = today or []
        return HistoryView(
            now=now,
            recent=tuple(recent or ()),
            daily_count=len(today),
            daily_total=sum((tx.amount for tx in today), Decimal("0")),
            rapid_count=rapid_count or 0,
        )

    async def analyze_transaction(self, candidate: TransactionCandidate) -> ApprovalAnalysis:
        logger.info(
            "Analyzing transaction for approval: user_id=%d type=%s amount=%s category=%s",
            candidate.user_id, candidate.type.value, candidate.amount, candidate.category,
        )
        history = await self.load_history(candidate.user_id)
        analysis = analyze(candidate, history)
        if analysis.confidence_score:
            logger.warning(
                "Transaction flagged: user_id=%d score=%d reasons=%s",
                candidate.user_id, analysis.confidence_score, ", ".join(analysis.reasons),
            )
        logger.info(
            "Transaction analysis complete: user_id=%d status=%s score=%d",
            candidate.user_id, analysis.status.value, analysis.confidence_score,
        )
        return analysis
