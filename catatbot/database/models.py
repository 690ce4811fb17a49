"""
Data classes mirroring the PostgreSQL schema and the in-flight workflow state.
Used for type safety and documentation, not ORM models.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class MenuState(str, Enum):
    """Position of a user inside the transaction-entry workflow."""
    MAIN = "main"
    TRANSACTION_TYPE = "transaction_type"
    CATEGORY = "category"
    AMOUNT = "amount"
    CONFIRM = "confirm"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class EditField(str, Enum):
    AMOUNT = "amount"
    CATEGORY = "category"
    DESCRIPTION = "description"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class EditSnapshot:
    """The four editable session fields, captured when an edit begins."""
    transaction_type: Optional[TransactionType] = None
    category: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "transaction_type": self.transaction_type.value if self.transaction_type else None,
            "category": self.category,
            "amount": self.amount,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EditSnapshot":
        tx_type = data.get("transaction_type")
        return cls(
            transaction_type=TransactionType(tx_type) if tx_type else None,
            category=data.get("category"),
            amount=data.get("amount"),
            description=data.get("description"),
        )


@dataclass
class Session:
    """Mirrors the `bot_sessions` table: one row per user while a flow is active."""
    user_id: int
    menu_state: MenuState = MenuState.MAIN
    transaction_type: Optional[TransactionType] = None
    category: Optional[str] = None
    amount: Optional[str] = None           # raw user input, re-parsed on use
    description: Optional[str] = None
    is_editing: bool = False
    editing_field: Optional[EditField] = None
    edit_snapshot: Optional[EditSnapshot] = None
    retry_count: int = 0
    last_submit_failed: bool = False   # set while the snapshot awaits a retry
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.is_editing and (self.editing_field is None or self.edit_snapshot is None):
            raise ValueError("An editing session needs both editing_field and edit_snapshot")

    # --- editing ---------------------------------------------------------

    def snapshot(self) -> EditSnapshot:
        return EditSnapshot(
            transaction_type=self.transaction_type,
            category=self.category,
            amount=self.amount,
            description=self.description,
        )

    def begin_edit(self, edit_field: EditField) -> None:
        """Enter the editing sub-flow, capturing the current field values."""
        self.edit_snapshot = self.snapshot()
        self.editing_field = edit_field
        self.is_editing = True

    def commit_edit(self) -> EditSnapshot:
        """Leave editing keeping the new values. Returns the consumed snapshot."""
        snap = self._take_snapshot()
        self.menu_state = MenuState.CONFIRM
        return snap

    def rollback_edit(self) -> EditSnapshot:
        """Leave editing restoring the values captured by begin_edit()."""
        snap = self._take_snapshot()
        self.transaction_type = snap.transaction_type
        self.category = snap.category
        self.amount = snap.amount
        self.description = snap.description
        self.menu_state = MenuState.CONFIRM
        return snap

    def _take_snapshot(self) -> EditSnapshot:
        if not self.is_editing or self.edit_snapshot is None:
            raise ValueError("No edit in progress")
        snap = self.edit_snapshot
        self.edit_snapshot = None
        self.editing_field = None
        self.is_editing = False
        return snap

    # --- (de)serialization ------------------------------------------------

    def to_context(self) -> dict:
        """Serialize everything except user_id/state/updated_at into JSONB context."""
        return {
            "transaction_type": self.transaction_type.value if self.transaction_type else None,
            "category": self.category,
            "amount": self.amount,
            "description": self.description,
            "is_editing": self.is_editing,
            "editing_field": self.editing_field.value if self.editing_field else None,
            "edit_snapshot": self.edit_snapshot.to_dict() if self.edit_snapshot else None,
            "retry_count": self.retry_count,
            "last_submit_failed": self.last_submit_failed,
        }

    @classmethod
    def from_context(
        cls,
        user_id: int,
        state: str,
        context: dict,
        updated_at: Optional[datetime] = None,
    ) -> "Session":
        tx_type = context.get("transaction_type")
        edit_field = context.get("editing_field")
        snapshot = context.get("edit_snapshot")
        return cls(
            user_id=user_id,
            menu_state=MenuState(state) if state else MenuState.MAIN,
            transaction_type=TransactionType(tx_type) if tx_type else None,
            category=context.get("category"),
            amount=context.get("amount"),
            description=context.get("description"),
            is_editing=bool(context.get("is_editing")),
            editing_field=EditField(edit_field) if edit_field else None,
            edit_snapshot=EditSnapshot.from_dict(snapshot) if snapshot else None,
            retry_count=int(context.get("retry_count") or 0),
            last_submit_failed=bool(context.get("last_submit_failed")),
            updated_at=updated_at,
        )

    @classmethod
    def from_record(cls, record) -> "Session":
        """Create Session from an asyncpg Record of `bot_sessions`."""
        ctx = record["context"]
        if isinstance(ctx, str):
            ctx = json.loads(ctx)
        return cls.from_context(
            record["user_id"], record["state"], ctx or {}, record["updated_at"]
        )

    def with_updates(self, **changes) -> "Session":
        return replace(self, **changes)


@dataclass
class PartialTransactionData:
    """Mirrors the `partial_transactions` table: a submission awaiting retry."""
    user_id: int
    transaction_type: Optional[TransactionType] = None
    category: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    retry_count: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: Session) -> "PartialTransactionData":
        return cls(
            user_id=session.user_id,
            transaction_type=session.transaction_type,
            category=session.category,
            amount=session.amount,
            description=session.description,
            retry_count=session.retry_count,
        )

    @classmethod
    def from_record(cls, record) -> "PartialTransactionData":
        tx_type = record["transaction_type"]
        return cls(
            user_id=record["user_id"],
            transaction_type=TransactionType(tx_type) if tx_type else None,
            category=record["category"],
            amount=record["amount"],
            description=record["description"],
            retry_count=record["retry_count"],
            created_at=record["created_at"],
        )


@dataclass(frozen=True)
class CategoryRef:
    """Mirrors the `categories` table."""
    id: int
    name: str
    type: TransactionType
    sort_order: int = 0


@dataclass(frozen=True)
class TransactionCandidate:
    """A not-yet-persisted transaction under evaluation."""
    user_id: int
    type: TransactionType
    category: str
    amount: Decimal
    description: Optional[str] = None


@dataclass
class Transaction:
    """Mirrors the `transactions` table."""
    id: str
    user_id: int
    type: TransactionType
    category: str
    amount: Decimal
    timestamp: datetime
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    description: Optional[str] = None
    approver_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    confidence_score: int = 0
    approval_reason: Optional[str] = None

    @classmethod
    def from_record(cls, record) -> "Transaction":
        """Create Transaction from an asyncpg Record."""
        return cls(
            id=str(record["id"]),
            user_id=record["user_id"],
            type=TransactionType(record["type"]),
            category=record["category"],
            amount=record["amount"],
            timestamp=record["timestamp"],
            approval_status=ApprovalStatus(record["approval_status"]),
            description=record["description"],
            approver_id=record["approver_id"],
            approved_at=record["approved_at"],
            rejection_reason=record["rejection_reason"],
            confidence_score=record["confidence_score"],
            approval_reason=record["approval_reason"],
        )


@dataclass(frozen=True)
class ApprovalFlags:
    is_duplicate: bool = False
    is_unrealistic_amount: bool = False
    exceeds_daily_limit: bool = False
    exceeds_daily_amount_limit: bool = False
    rapid_successive_transactions: bool = False
    has_suspicious_keywords: bool = False
    lacks_description: bool = False


@dataclass(frozen=True)
class ApprovalAnalysis:
    """Outcome of scoring a candidate. Computed, never stored as its own row."""
    flags: ApprovalFlags
    confidence_score: int
    status: ApprovalStatus
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def requires_manual_approval(self) -> bool:
        return self.status == ApprovalStatus.PENDING


@dataclass(frozen=True)
class DailyTotals:
    """One user's transactions since the start of the business day."""
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass(frozen=True)
class ApprovalStats:
    """Approval queue size plus today's decisions, for approvers."""
    pending: int = 0
    approved_today: int = 0        # decided by an approver
    auto_approved_today: int = 0
    rejected_today: int = 0
