"""
services/expense_service.py — Expense business logic.

Every write runs the same pipeline:
  compute_splits()  → Split rows (sum == amount, exactly)
  generate_debts()  → pairwise debts owed to the payer
  store.persist_debts() → voids the expense's previous outstanding debts,
                          stores the new set

Business rules enforced here (the schema cannot, they need the database):
  FORBIDDEN (403)              — caller must be a group member; only the payer
                                 or a group admin may edit or delete
  PAYER_NOT_MEMBER (422)       — paid_by_user_id must be a group member
  PARTICIPANT_NOT_MEMBER (422) — every participant must be a group member
  CURRENCY_MISMATCH (422)      — one currency per group
  EXPENSE_DELETED (422)        — a deleted expense cannot be edited
  INVALID_SPLIT (422)          — raised by split_service

Already-settled debts:
  Settled debts are terminal. When an expense is edited after some of its
  debts were settled, the regenerated debt for each (debtor, creditor) pair
  is reduced by what that pair already settled on this expense. An excess
  (the new share is smaller than what was paid) becomes a refund debt in the
  opposite direction. Deleting an expense is the same computation against an
  empty debt set.

Layer rules:
  - No Flask imports. Receives plain ints and dicts, returns ORM objects.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from nexledger.app.errors import AppError, ErrorCode, InvalidSplitError, NotFoundError
from nexledger.app.models.expense import Expense
from nexledger.app.models.split import Split
from nexledger.app.money import ZERO
from nexledger.app.records import DebtRecord, ExpenseInput, Participant, SplitPolicy, SplitSettings
from nexledger.app.services.access import get_group_or_404, get_member_ids, is_admin, require_member
from nexledger.app.services.debt_service import generate_debts
from nexledger.app.services.split_service import compute_splits
from nexledger.app.store.sql import SqlAlchemyDebtStore

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense (active or deleted) or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(ErrorCode.EXPENSE_NOT_FOUND, f"Expense {expense_id} does not exist.")
    return expense


def _validate_payer_is_member(payer_id: int, group_id: int, member_ids: list[int]) -> None:
    if payer_id not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer_id} is not a member of group {group_id}.",
            422,
            field="paid_by_user_id",
        )


def _validate_participants_are_members(
        participants: list[Participant],
        group_id: int,
        member_ids: list[int],
) -> None:
    """Raises PARTICIPANT_NOT_MEMBER (422) for the first participant not in the group."""
    member_set = set(member_ids)
    for p in participants:
        if p.user_id not in member_set:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {p.user_id} is not a member of group {group_id}.",
                422,
                field="participants",
            )


def _validate_currency(currency: str, group) -> None:
    if currency != group.currency:
        raise AppError(
            ErrorCode.CURRENCY_MISMATCH,
            f"Group {group.id} uses {group.currency}; expense currency {currency} is not accepted.",
            422,
            field="currency",
        )


def _require_payer_or_admin(expense: Expense, membership, action: str) -> None:
    if expense.paid_by_user_id != membership.user_id and not is_admin(membership):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the original payer or a group admin may {action} this expense.",
            403,
        )


def _participants_from_data(raw: list[dict] | None, member_ids: list[int]) -> list[Participant]:
    """
    Converts validated participant dicts to Participant records.

    With no participant list the expense is split between every current
    member, in ascending user id order.
    """
    if raw is None:
        return [Participant(user_id=uid) for uid in member_ids]
    return [
        Participant(
            user_id=p["user_id"],
            percentage=p.get("percentage"),
            amount=p.get("amount"),
        )
        for p in raw
    ]


def _participants_from_rows(expense: Expense) -> list[Participant]:
    return [
        Participant(user_id=s.user_id, percentage=s.percentage, amount=s.amount)
        for s in expense.splits
    ]


def _with_payer(
        expense: Expense,
        participants: list[Participant],
        member_ids: list[int],
) -> list[Participant]:
    """
    Puts the payer back into stored participants that were split without them.

    Only an EQUALLY split can take the payer back without a share being sent;
    when the payer and the stored rows make up the whole group, the member
    order of a default split is restored.
    """
    payer_id = expense.paid_by_user_id
    if any(p.user_id == payer_id for p in participants):
        return participants
    if expense.split_policy != SplitPolicy.EQUALLY:
        raise InvalidSplitError(
            f"Send participants with a share for user {payer_id} to include the payer "
            f"in a {expense.split_policy.value} split."
        )
    user_ids = {p.user_id for p in participants} | {payer_id}
    if user_ids == set(member_ids):
        return _participants_from_data(None, member_ids)
    return participants + [Participant(user_id=payer_id)]


def _write_split_rows(
        expense: Expense,
        participants: list[Participant],
        shares: dict[int, Decimal],
        session: Session,
) -> None:
    """Replaces the expense's Split rows with the computed shares."""
    # delete-orphan cascade removes the old rows; flush before the
    # UNIQUE(expense_id, user_id) rows are re-inserted.
    expense.splits.clear()
    session.flush()

    for position, p in enumerate(participants):
        if p.user_id not in shares:
            continue  # payer excluded from the split
        expense.splits.append(Split(
            user_id=p.user_id,
            position=position,
            amount=shares[p.user_id],
            percentage=p.percentage if expense.split_policy == SplitPolicy.PERCENTAGE else None,
        ))
    session.flush()


def _net_settled(
        expense: Expense,
        debts: list[DebtRecord],
        store: SqlAlchemyDebtStore,
) -> list[DebtRecord]:
    """
    Reduces freshly generated debts by what this expense already settled.

    Returns the debts to persist: per (debtor, creditor) pair, what is still
    owed after settled payments, plus refund debts where payments exceed the
    new obligation. Pairs owing each other are netted to one direction.
    """
    owed: dict[tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
    for debt in debts:
        owed[(debt.debtor_id, debt.creditor_id)] += debt.amount

    for debt in store.list_debts(group_id=expense.group_id):
        if debt.expense_id != expense.id or not debt.is_settled:
            continue
        pair = (debt.debtor_id, debt.creditor_id)
        covered = min(owed[pair], debt.amount)
        owed[pair] -= covered
        if debt.amount > covered:
            owed[(debt.creditor_id, debt.debtor_id)] += debt.amount - covered

    netted: list[DebtRecord] = []
    for (debtor_id, creditor_id), amount in owed.items():
        reverse = owed.get((creditor_id, debtor_id), ZERO)
        if amount <= reverse:
            continue  # zero, or owed the other way round
        netted.append(DebtRecord(
            group_id=expense.group_id,
            expense_id=expense.id,
            debtor_id=debtor_id,
            creditor_id=creditor_id,
            amount=amount - reverse,
        ))
    return netted


def _regenerate_debts(
        expense: Expense,
        participants: list[Participant],
        settings: SplitSettings,
        session: Session,
) -> None:
    """Recomputes shares, rewrites split rows and supersedes the expense's debts."""
    shares = compute_splits(
        expense.amount,
        expense.split_policy,
        participants,
        payer_participates=expense.payer_participates,
        payer_id=expense.paid_by_user_id,
        settings=settings,
    )
    _write_split_rows(expense, participants, shares, session)

    debts = generate_debts(
        ExpenseInput(
            expense_id=expense.id,
            group_id=expense.group_id,
            payer_id=expense.paid_by_user_id,
            amount=expense.amount,
            currency=expense.currency,
        ),
        shares,
        expense.paid_by_user_id,
    )
    store = SqlAlchemyDebtStore(session)
    store.persist_debts(expense.id, _net_settled(expense, debts, store))


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        settings: SplitSettings | None = None,
) -> Expense:
    """
    Records a new expense and its debts.

    Args:
        group_id:  The group this expense belongs to.
        caller_id: The caller (flask.g.user_id).
        data:      Validated dict from CreateExpenseSchema.
        settings:  Split configuration (currency default, percentage tolerance).

    Returns:
        The newly created Expense ORM object (with splits loaded).
    """
    settings = settings or SplitSettings()
    group = get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    payer_id: int = data["paid_by_user_id"]
    currency: str = data.get("currency") or group.currency or settings.currency
    member_ids = get_member_ids(group_id, session)

    _validate_payer_is_member(payer_id, group_id, member_ids)
    _validate_currency(currency, group)
    participants = _participants_from_data(data.get("participants"), member_ids)
    _validate_participants_are_members(participants, group_id, member_ids)

    expense = Expense(
        group_id=group_id,
        paid_by_user_id=payer_id,
        description=data["description"],
        amount=data["amount"],
        currency=currency,
        split_policy=data.get("split_policy", SplitPolicy.EQUALLY),
        payer_participates=data.get("payer_participates", True),
        created_at=datetime.now(timezone.utc),
    )
    session.add(expense)
    session.flush()  # populate expense.id before writing splits and debts

    _regenerate_debts(expense, participants, settings, session)

    session.refresh(expense)
    logger.info(
        "Expense %s created in group %s: amount=%s %s policy=%s",
        expense.id, group_id, expense.amount, currency, expense.split_policy.value,
    )
    return expense


def get_expense(expense_id: int, caller_id: int, session: Session) -> Expense:
    """
    Returns a single expense including its splits, deleted or not.

    The caller must be a member of the expense's group (FORBIDDEN, 403).
    """
    expense = _get_expense_or_404(expense_id, session)
    require_member(expense.group_id, caller_id, session)
    return expense


def edit_expense(
        expense_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        settings: SplitSettings | None = None,
) -> Expense:
    """
    Partially updates an expense and recalculates its debts.

    Fields missing from `data` keep their stored value; when participants
    are not sent, the stored split rows (with their percentages or
    amounts) are reused. Any change to amount, payer, policy,
    payer_participates or participants regenerates the debts.

    Raises:
        NotFoundError(EXPENSE_NOT_FOUND)  -- expense does not exist.
        AppError(FORBIDDEN, 403)          -- not a member, or neither payer nor admin.
        AppError(EXPENSE_DELETED, 422)    -- expense was deleted.
        InvalidSplitError (422)           -- the merged input does not split.
    """
    settings = settings or SplitSettings()
    expense = _get_expense_or_404(expense_id, session)
    membership = require_member(expense.group_id, caller_id, session)

    if expense.is_deleted:
        raise AppError(
            ErrorCode.EXPENSE_DELETED,
            f"Expense {expense_id} has been deleted and cannot be edited.",
            422,
        )
    _require_payer_or_admin(expense, membership, "edit")

    group = get_group_or_404(expense.group_id, session)
    member_ids = get_member_ids(expense.group_id, session)

    if "description" in data:
        expense.description = data["description"]

    if "currency" in data:
        _validate_currency(data["currency"], group)

    recalculate = False

    if "paid_by_user_id" in data:
        _validate_payer_is_member(data["paid_by_user_id"], expense.group_id, member_ids)
        recalculate |= data["paid_by_user_id"] != expense.paid_by_user_id
        expense.paid_by_user_id = data["paid_by_user_id"]

    if "amount" in data:
        recalculate |= data["amount"] != expense.amount
        expense.amount = data["amount"]

    if "split_policy" in data:
        recalculate |= data["split_policy"] != expense.split_policy
        expense.split_policy = data["split_policy"]

    payer_rejoins = data.get("payer_participates") is True and not expense.payer_participates
    if "payer_participates" in data:
        recalculate |= data["payer_participates"] != expense.payer_participates
        expense.payer_participates = data["payer_participates"]

    if "participants" in data:
        participants = _participants_from_data(data["participants"], member_ids)
        _validate_participants_are_members(participants, expense.group_id, member_ids)
        recalculate = True
    else:
        participants = _participants_from_rows(expense)
        if payer_rejoins:
            participants = _with_payer(expense, participants, member_ids)

    if recalculate:
        _regenerate_debts(expense, participants, settings, session)

    expense.updated_at = datetime.now(timezone.utc)
    session.flush()
    session.refresh(expense)
    logger.info("Expense %s edited (recalculated=%s)", expense.id, recalculate)
    return expense


def delete_expense(expense_id: int, caller_id: int, session: Session) -> None:
    """
    Soft-deletes an expense and voids its outstanding debts.

    Debts the expense already settled stay settled; each is offset by a
    refund debt so balances return to what they were without the expense.
    Deleting an already deleted expense is a no-op.
    """
    expense = _get_expense_or_404(expense_id, session)
    membership = require_member(expense.group_id, caller_id, session)
    _require_payer_or_admin(expense, membership, "delete")

    if expense.is_deleted:
        return

    store = SqlAlchemyDebtStore(session)
    store.persist_debts(expense.id, _net_settled(expense, [], store))
    expense.deleted_at = datetime.now(timezone.utc)
    session.flush()
    logger.info("Expense %s deleted from group %s", expense.id, expense.group_id)
