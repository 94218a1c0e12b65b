"""
records.py — Plain data records used by the settlement and debt engine.

The engine never touches ORM objects. The SQLAlchemy models in app/models/
are converted to these records at the store boundary (store/sql.py), so the
engine cannot depend on lazy loading or identity-map semantics.

Enums are defined here (not in models/) so that schemas, services, the
in-memory store and the models can all import them without pulling in
SQLAlchemy. Do not duplicate their values as string literals elsewhere.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from nexledger.app.money import ZERO, total


# ── Enum Definitions ───────────────────────────────────────────────────────

class SplitPolicy(str, enum.Enum):
    EQUALLY    = "equally"
    PERCENTAGE = "percentage"
    AMOUNT     = "amount"


class SettlementMode(str, enum.Enum):
    SIMPLIFIED = "simplified"
    DETAILED   = "detailed"


class SettlementStatus(str, enum.Enum):
    PENDING = "pending"
    SETTLED = "settled"


class GroupKind(str, enum.Enum):
    """GROUP: every member sees and settles everything. PERSONAL: members see their own."""
    GROUP    = "group"
    PERSONAL = "personal"


class MemberRole(str, enum.Enum):
    ADMIN  = "admin"
    MEMBER = "member"


# Sentinel accepted by SettlementExecutor.execute() in place of a list of ids.
SETTLE_ALL = "all"


# ── Split input ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Participant:
    """
    One participant of an expense split.

    percentage is read for PERCENTAGE policy, amount for AMOUNT policy.
    Both are ignored for EQUALLY.
    """
    user_id: int
    percentage: Decimal | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class SplitSettings:
    """Explicit configuration for the split calculator."""
    currency: str = "USD"
    percentage_tolerance: Decimal = ZERO


@dataclass(frozen=True)
class ExpenseInput:
    """The fields of an expense the debt generator needs."""
    expense_id: int | None
    group_id: int
    payer_id: int
    amount: Decimal
    currency: str = "USD"


# ── Debts ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DebtRecord:
    """
    A directed obligation: debtor_id owes creditor_id `amount`.

    settled_at is None while outstanding. Once set the record is terminal.
    voided_at is set when the parent expense is edited or deleted; a voided
    debt is neither outstanding nor settled.
    """
    group_id: int
    debtor_id: int
    creditor_id: int
    amount: Decimal
    id: int | None = None
    expense_id: int | None = None
    settled_at: datetime | None = None
    voided_at: datetime | None = None
    payment_method: str | None = None
    notes: str | None = None
    parent_debt_id: int | None = None
    created_at: datetime | None = None

    @property
    def is_outstanding(self) -> bool:
        return self.settled_at is None and self.voided_at is None

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None and self.voided_at is None


@dataclass(frozen=True)
class BalanceScope:
    """Restricts balance aggregation to one group or to one user across groups."""
    group_id: int | None = None
    user_id: int | None = None

    def includes(self, debt: DebtRecord) -> bool:
        if self.group_id is not None and debt.group_id != self.group_id:
            return False
        if self.user_id is not None and self.user_id not in (debt.debtor_id, debt.creditor_id):
            return False
        return True


# ── Settlement ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SettlementTransaction:
    id: str
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal
    mode: SettlementMode
    status: SettlementStatus = SettlementStatus.PENDING
    related_debt_ids: tuple[int, ...] = ()
    created_at: datetime | None = None
    executed_at: datetime | None = None

    def involves(self, user_id: int) -> bool:
        return user_id in (self.from_user_id, self.to_user_id)


@dataclass(frozen=True)
class TransactionFailure:
    transaction_id: str
    code: str
    message: str


@dataclass
class ExecutionReport:
    group_id: int
    mode: SettlementMode
    executed_at: datetime
    executed: list[SettlementTransaction] = field(default_factory=list)
    failures: list[TransactionFailure] = field(default_factory=list)
    remaining: list[SettlementTransaction] = field(default_factory=list)

    @property
    def settled_count(self) -> int:
        return len(self.executed)

    @property
    def settled_total(self) -> Decimal:
        return total(t.amount for t in self.executed)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def remaining_count(self) -> int:
        return len(self.remaining)

    @property
    def remaining_total(self) -> Decimal:
        return total(t.amount for t in self.remaining)


@dataclass(frozen=True)
class SettlementSummary:
    group_id: int | None
    user_id: int | None
    total_debts: int
    settled_debts: int
    unsettled_debts: int
    total_amount: Decimal
    settled_amount: Decimal
    unsettled_amount: Decimal
    last_settled_at: datetime | None
    average_settlement_hours: float
