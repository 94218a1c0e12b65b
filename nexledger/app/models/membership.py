"""
models/membership.py — Membership junction table definition.

No business logic. No imports from services or routes.

user_id is an opaque identifier issued by the identity provider; there is
no users table in this schema.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from nexledger.app.extensions import db
from nexledger.app.models.group import enum_values
from nexledger.app.records import MemberRole


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        # A user can only belong to a group once.
        UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True,
    )

    # ON DELETE RESTRICT — cannot delete a group that has members.
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    role: Mapped[MemberRole] = mapped_column(
        Enum(
            MemberRole,
            name="member_role_enum",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        default=MemberRole.MEMBER,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership id={self.id} "
            f"user_id={self.user_id} "
            f"group_id={self.group_id} "
            f"role={self.role.value}>"
        )
