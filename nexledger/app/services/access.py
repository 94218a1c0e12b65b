"""
services/access.py — Group lookup and membership checks shared by services.

Non-members receive 403, not 404: the group's existence is checked first
(GROUP_NOT_FOUND), then membership (FORBIDDEN).

Layer rules:
  - No Flask imports. Receives a SQLAlchemy session.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from nexledger.app.errors import AppError, ErrorCode, NotFoundError
from nexledger.app.models.group import Group
from nexledger.app.models.membership import Membership
from nexledger.app.records import MemberRole


def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise NotFoundError(ErrorCode.GROUP_NOT_FOUND, f"Group {group_id} does not exist.")
    return group


def get_membership(group_id: int, user_id: int, session: Session) -> Membership | None:
    return session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()


def require_member(group_id: int, user_id: int, session: Session) -> Membership:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    membership = get_membership(group_id, user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return membership


def is_admin(membership: Membership) -> bool:
    return membership.role == MemberRole.ADMIN


def get_member_ids(group_id: int, session: Session) -> list[int]:
    """Returns the user_ids of all current members of a group, ascending."""
    stmt = (
        select(Membership.user_id)
        .where(Membership.group_id == group_id)
        .order_by(Membership.user_id)
    )
    return list(session.execute(stmt).scalars().all())
