"""
tests/unit/test_compute_balances.py — Unit tests for balance_service.net_balances.

What this file proves:
  - balance = Σ owed to user − Σ owed by user, over outstanding debts only
  - Settled and voided debts are ignored
  - Group / user scopes restrict the aggregation
  - Balances of one group always sum to zero; assert_conserved() rejects
    anything else
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from nexledger.app.errors import ErrorCode, InconsistentStateError
from nexledger.app.records import BalanceScope, DebtRecord
from nexledger.app.services.balance_service import assert_conserved, net_balances

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _debt(debtor: int, creditor: int, amount: str, group_id: int = 1, **kwargs) -> DebtRecord:
    return DebtRecord(
        group_id=group_id,
        debtor_id=debtor,
        creditor_id=creditor,
        amount=Decimal(amount),
        **kwargs,
    )


def test_empty_input_returns_empty_dict():
    assert net_balances([]) == {}


def test_single_debt():
    balances = net_balances([_debt(2, 1, "25.00")])
    assert balances == {1: Decimal("25.00"), 2: Decimal("-25.00")}


def test_multiple_debts_net_per_user():
    debts = [
        _debt(2, 1, "30.00"),
        _debt(3, 1, "30.00"),
        _debt(1, 3, "10.00"),
        _debt(3, 2, "5.00"),
    ]

    balances = net_balances(debts)

    assert balances == {
        1: Decimal("50.00"),
        2: Decimal("-25.00"),
        3: Decimal("-25.00"),
    }
    assert sum(balances.values()) == Decimal("0.00")


def test_opposite_debts_cancel_to_zero():
    balances = net_balances([_debt(1, 2, "10.00"), _debt(2, 1, "10.00")])
    assert balances == {1: Decimal("0.00"), 2: Decimal("0.00")}


def test_settled_and_voided_debts_ignored():
    debts = [
        _debt(2, 1, "10.00"),
        _debt(2, 1, "99.00", settled_at=NOW),
        _debt(3, 1, "50.00", voided_at=NOW),
    ]
    assert net_balances(debts) == {1: Decimal("10.00"), 2: Decimal("-10.00")}


def test_group_scope_filters_other_groups():
    debts = [_debt(2, 1, "10.00", group_id=1), _debt(2, 1, "40.00", group_id=2)]
    balances = net_balances(debts, BalanceScope(group_id=2))
    assert balances == {1: Decimal("40.00"), 2: Decimal("-40.00")}


def test_user_scope_keeps_only_debts_involving_user():
    debts = [_debt(2, 1, "10.00"), _debt(3, 4, "7.00"), _debt(1, 3, "2.50")]
    balances = net_balances(debts, BalanceScope(user_id=1))
    assert balances == {
        1: Decimal("7.50"),
        2: Decimal("-10.00"),
        3: Decimal("2.50"),
    }


def test_balances_are_decimal():
    balances = net_balances([_debt(2, 1, "0.10"), _debt(2, 1, "0.20")])
    assert balances[1] == Decimal("0.30")
    assert isinstance(balances[1], Decimal)


# ── Conservation ───────────────────────────────────────────────────────────

def test_assert_conserved_accepts_zero_sum():
    assert_conserved({1: Decimal("5.00"), 2: Decimal("-5.00")}, "group 1")


def test_assert_conserved_accepts_empty():
    assert_conserved({}, "group 1")


def test_assert_conserved_rejects_non_zero_sum():
    with pytest.raises(InconsistentStateError) as exc_info:
        assert_conserved({1: Decimal("5.00"), 2: Decimal("-4.99")}, "group 7")

    err = exc_info.value
    assert err.code == ErrorCode.INCONSISTENT_STATE
    assert err.http_status == 500
    assert "group 7" in err.message
