"""
models/debt.py — Debt table definition.

No business logic. No imports from services or routes.

Lifecycle:
  - Created by the debt generator when an expense is created or edited.
  - settled_at is set exactly once, by the settlement executor, with a
    conditional UPDATE ... WHERE settled_at IS NULL (store/sql.py).
  - voided_at is set when the parent expense is edited or deleted. Debt rows
    are never deleted, so the settlement history stays auditable.
  - A partial settlement reduces the live row's amount and inserts a settled
    row for the covered portion with parent_debt_id pointing at the live row.
  - expense_id is NULL for ad-hoc rows written by settlement rerouting.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from nexledger.app.extensions import db


class Debt(db.Model):
    __tablename__ = "debts"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_debts_amount_positive"),
        CheckConstraint("debtor_id <> creditor_id", name="ck_debts_no_self_debt"),
        # Planner and balance queries read outstanding debts per group.
        Index(
            "idx_debts_outstanding",
            "group_id",
            postgresql_where="settled_at IS NULL AND voided_at IS NULL",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    debtor_id: Mapped[int] = mapped_column(nullable=False, index=True)

    creditor_id: Mapped[int] = mapped_column(nullable=False, index=True)

    expense_id: Mapped[int | None] = mapped_column(
        ForeignKey("expenses.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    parent_debt_id: Mapped[int | None] = mapped_column(
        ForeignKey("debts.id", ondelete="RESTRICT"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    settled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Debt id={self.id} "
            f"{self.debtor_id}->{self.creditor_id} "
            f"amount={self.amount} "
            f"settled={self.settled_at is not None}>"
        )
