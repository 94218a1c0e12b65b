"""
models/expense.py — Expense table definition.

No business logic. No imports from services or routes.

Key design points:
  - `deleted_at` is NULL for active expenses, non-null for soft-deleted ones.
    Deleting an expense voids its outstanding debts; rows are never removed.
  - `amount` uses Numeric(12, 2) — never Float.
  - `split_policy` and `payer_participates` are kept so an edit can recompute
    shares from whatever subset of fields the client changes.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexledger.app.extensions import db
from nexledger.app.models.group import enum_values
from nexledger.app.records import SplitPolicy


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        # Active-only expense queries.
        Index(
            "idx_expenses_active",
            "group_id",
            postgresql_where="deleted_at IS NULL",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE RESTRICT — cannot delete a group that has expenses.
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    paid_by_user_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # NUMERIC(12, 2). Never Float. Input with >2 decimal places is rejected
    # by the schema (INVALID_AMOUNT_PRECISION), not rounded.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    split_policy: Mapped[SplitPolicy] = mapped_column(
        Enum(
            SplitPolicy,
            name="split_policy_enum",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        default=SplitPolicy.EQUALLY,
    )

    payer_participates: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Set on every successful PATCH.
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="expenses",
    )

    splits: Mapped[list["Split"]] = relationship(  # noqa: F821
        "Split",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Split.position",
    )

    @property
    def is_deleted(self) -> bool:
        """True if this expense has been soft-deleted."""
        return self.deleted_at is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"group_id={self.group_id} "
            f"amount={self.amount} "
            f"policy={self.split_policy.value} "
            f"deleted={self.is_deleted}>"
        )
