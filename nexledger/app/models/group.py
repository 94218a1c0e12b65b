"""
models/group.py — Group ("nex") table definition.

No business logic. No imports from services or routes.

Group and membership rows are written by the group-management collaborator;
this code base only reads them (membership checks, currency, settlement mode).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexledger.app.extensions import db
from nexledger.app.records import GroupKind, SettlementMode


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'simplified'), not names ('SIMPLIFIED')."""
    return [member.value for member in enum_cls]


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
        # ISO 4217 alphabetic code.
        CheckConstraint(
            "LENGTH(currency) = 3",
            name="ck_groups_currency_iso",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    kind: Mapped[GroupKind] = mapped_column(
        Enum(
            GroupKind,
            name="group_kind_enum",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        default=GroupKind.GROUP,
    )

    # One currency per group; multi-currency netting is out of scope.
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )

    # Used when a settlement request does not name a mode. NULL means the
    # application default (LEDGER_DEFAULT_SETTLEMENT_MODE).
    settlement_mode: Mapped[SettlementMode | None] = mapped_column(
        Enum(
            SettlementMode,
            name="settlement_mode_enum",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="group",
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="group",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r} kind={self.kind.value}>"
