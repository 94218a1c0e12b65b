"""
services/balance_service.py — Balance aggregation.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
The planner, the executor and the HTTP payloads all go through
net_balances(); the formula must not be reimplemented elsewhere.

Formula (outstanding debts only):
  balance[user] = Σ amount where user is creditor − Σ amount where user is debtor

Conservation law:
  For any set of outstanding debts restricted to one group, the balances sum
  to exactly 0.00. assert_conserved() turns a violation into an
  InconsistentStateError (500); it is never silently patched.

Layer rules:
  - net_balances() and assert_conserved() are pure. No session, no Flask.
  - get_group_balances() / get_user_balances() receive a SQLAlchemy session
    and return plain dicts for the routes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from nexledger.app.errors import AppError, ErrorCode, InconsistentStateError
from nexledger.app.models.group import Group
from nexledger.app.money import CENT, ZERO, quantize_money, total
from nexledger.app.records import BalanceScope, DebtRecord, GroupKind, SettlementMode
from nexledger.app.services.access import get_group_or_404, get_member_ids, is_admin, require_member

logger = logging.getLogger(__name__)


# ── Core algorithm ─────────────────────────────────────────────────────────

def net_balances(
        outstanding_debts: Iterable[DebtRecord],
        scope: BalanceScope | None = None,
) -> dict[int, Decimal]:
    """
    Reduces outstanding debts to a signed net balance per user.

    Args:
        outstanding_debts: Debts to aggregate. Settled or voided records are
                           skipped, so callers may pass a mixed list.
        scope:             BalanceScope(group_id=...) or BalanceScope(user_id=...).
                           Debts outside the scope are ignored.

    Returns:
        {user_id: balance}. Positive = is owed money, negative = owes money.
        Only users appearing in at least one in-scope debt are present.
    """
    balances: dict[int, Decimal] = defaultdict(lambda: ZERO)

    for debt in outstanding_debts:
        if not debt.is_outstanding:
            continue
        if scope is not None and not scope.includes(debt):
            continue
        balances[debt.debtor_id] -= debt.amount
        balances[debt.creditor_id] += debt.amount

    return dict(balances)


def assert_conserved(balances: dict[int, Decimal], context: str) -> None:
    """Raises InconsistentStateError if the balances do not sum to zero (to the cent)."""
    balance_sum = total(balances.values())
    if abs(balance_sum) >= CENT:
        logger.error("Conservation law violated for %s: sum=%s", context, balance_sum)
        raise InconsistentStateError(
            f"Balance integrity check failed for {context}: "
            f"sum was {balance_sum} (expected 0.00)."
        )


# ── HTTP payloads ──────────────────────────────────────────────────────────

def _store(session: Session):
    from nexledger.app.store.sql import SqlAlchemyDebtStore  # local import to avoid circular dep
    return SqlAlchemyDebtStore(session)


def get_group_balances(group_id: int, caller_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Every member appears, with 0.00 when they have no outstanding debts.
    The SIMPLIFIED plan for the current state is attached; in a PERSONAL
    group a non-admin only sees the plan entries they are party to.

    Raises:
        NotFoundError(GROUP_NOT_FOUND)  -- group does not exist.
        AppError(FORBIDDEN, 403)        -- caller not a group member.
        InconsistentStateError (500)    -- conservation law violated.
    """
    from nexledger.app.services.settlement_service import filter_for_user, plan

    group: Group = get_group_or_404(group_id, session)
    membership = require_member(group_id, caller_id, session)

    debts = _store(session).list_outstanding_debts(group_id=group_id)
    balances = net_balances(debts, BalanceScope(group_id=group_id))
    assert_conserved(balances, f"group {group_id}")

    for member_id in get_member_ids(group_id, session):
        balances.setdefault(member_id, ZERO)

    transactions = plan(group_id, SettlementMode.SIMPLIFIED, debts)
    if group.kind == GroupKind.PERSONAL and not is_admin(membership):
        transactions = filter_for_user(transactions, caller_id)

    return {
        "group_id": group_id,
        "currency": group.currency,
        "balances": [
            {"user_id": uid, "balance": str(quantize_money(balances[uid]))}
            for uid in sorted(balances)
        ],
        "simplified_debts": [
            {
                "from_user_id": t.from_user_id,
                "to_user_id": t.to_user_id,
                "amount": str(t.amount),
            }
            for t in transactions
        ],
        "balance_sum": str(quantize_money(total(balances.values()))),
    }


def get_user_balances(user_id: int, caller_id: int, session: Session) -> dict:
    """
    Builds the payload for GET /users/:id/balances.

    Cross-group view of one user's outstanding position, broken down per
    group (groups may use different currencies, so there is no grand total)
    and per counterparty. `owed_to_you` is positive when the counterparty
    owes the user, negative when the user owes them.

    A user may only read their own cross-group balances (FORBIDDEN otherwise).
    """
    if user_id != caller_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only view your own balances.",
            403,
        )

    debts = _store(session).list_outstanding_debts(user_id=user_id)

    by_group: dict[int, list[DebtRecord]] = defaultdict(list)
    for debt in debts:
        by_group[debt.group_id].append(debt)

    groups = []
    for group_id in sorted(by_group):
        group = session.get(Group, group_id)
        balances = net_balances(by_group[group_id], BalanceScope(group_id=group_id, user_id=user_id))
        own = balances.pop(user_id, ZERO)
        groups.append({
            "group_id": group_id,
            "currency": group.currency if group is not None else None,
            "balance": str(quantize_money(own)),
            "counterparties": [
                {"user_id": uid, "owed_to_you": str(quantize_money(-bal))}
                for uid, bal in sorted(balances.items())
                if bal != ZERO
            ],
        })

    return {"user_id": user_id, "groups": groups}
