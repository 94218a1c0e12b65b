"""
services/debt_service.py — Debt generator.

Converts an expense's payer and computed shares into pairwise debts:
one DebtRecord(debtor=participant, creditor=payer, amount=share) for every
participant whose share is positive and who is not the payer. The payer's
own share is simply not owed to anyone — there is never a self-debt.

Recalculation policy:
  When an expense is edited the generator is re-run against the NEW shares.
  Debts are never mutated in place; the store voids the expense's previous
  outstanding debts before persisting the new set (store.persist_debts).

Pure function. The returned records have no id yet; the store assigns ids.
"""

from __future__ import annotations

from decimal import Decimal

from nexledger.app.errors import InvalidSplitError
from nexledger.app.money import ZERO
from nexledger.app.records import DebtRecord, ExpenseInput


def generate_debts(
        expense: ExpenseInput,
        splits: dict[int, Decimal],
        payer_id: int,
) -> list[DebtRecord]:
    """
    Builds the debts owed to payer_id for one expense.

    Args:
        expense:  Expense identity (group, id). expense.payer_id is informational;
                  payer_id is authoritative so recalculation can change payer.
        splits:   {user_id: share} from compute_splits(). Order is preserved.
        payer_id: The creditor of every generated debt.

    Returns:
        Debts in split order, one per non-payer participant with share > 0.
    """
    debts: list[DebtRecord] = []

    for user_id, share in splits.items():
        if share < ZERO:
            raise InvalidSplitError(f"Share for user {user_id} is negative ({share}).")
        if user_id == payer_id or share == ZERO:
            continue
        debts.append(DebtRecord(
            group_id=expense.group_id,
            expense_id=expense.expense_id,
            debtor_id=user_id,
            creditor_id=payer_id,
            amount=share,
        ))

    return debts
