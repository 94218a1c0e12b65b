"""
models/split.py — Split table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float. A zero share is allowed
    (AMOUNT policy); it simply generates no debt.
  - `percentage` is only set for PERCENTAGE splits and records the input
    the share was derived from.
  - `position` is the participant's index in the request. EQUALLY splits
    hand leftover cents out by position, so recalculation needs it.
  - UNIQUE(expense_id, user_id): a user appears once per expense.

sum(splits.amount) == expense.amount is guaranteed by split_service, which
computes every row written here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexledger.app.extensions import db


class Split(db.Model):
    __tablename__ = "splits"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE — splits are owned by their expense.
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        nullable=False,
    )

    position: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(7, 4),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount}>"
        )
