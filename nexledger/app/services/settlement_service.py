"""
services/settlement_service.py — Settlement planning, execution and summaries.

Planner (pure):
  plan(group_id, mode, outstanding_debts) → list[SettlementTransaction]

  DETAILED    one PENDING transaction per outstanding debt, ascending debt id.
  SIMPLIFIED  greedy minimum cash flow over net_balances(): repeatedly match
              the largest creditor with the largest debtor (ties: lower
              user id first), transfer min(credit, debt), drop whoever hits
              zero. At most |creditors| + |debtors| − 1 transactions. The
              greedy result is the contract; exact minimality is not attempted.

  Transaction ids are uuid5 names of the transaction's content, so re-planning
  an unchanged state yields the same ids, and an id taken from a stale plan is
  simply absent from a fresh one.

Executor (writes through a DebtStore):
  SettlementExecutor.execute() re-plans under store.lock_group(), then settles
  each selected transaction inside its own store.atomic() unit. A transaction
  that no longer matches the store fails alone (StaleSettlementError /
  NotFoundError) and the rest continue. Partial failure, not all-or-nothing.

  SIMPLIFIED settlement of D → C for amount t:
    1. direct D→C debts, oldest first; a partly covered debt is split
       (live debt reduced, settled child row for the covered portion)
    2. the remainder is rerouted: D's other outgoing debts (D→X) are paired
       with C's other incoming debts (Y→C), related debts first. The paired
       portion is settled on both sides and, when X ≠ Y, an outstanding
       debt Y→X replaces it. Outstanding X→Y debts absorb that portion
       first; only what they do not cover becomes a new debt.
    3. D→C and C→D debts left outstanding offset each other.
  Only D's and C's balances move. A settle-all in SIMPLIFIED mode finally
  closes every outstanding debt once all balances are zero (pure cycles).

HTTP wrappers (session-based, no Flask imports):
  get_available_settlements(), execute_settlements(), get_settlement_summary(),
  get_settlement_history()
  Commits for execution happen in store.lock_group(), not in the route.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy.orm import Session

from nexledger.app.errors import (
    AppError,
    ErrorCode,
    InconsistentStateError,
    NotFoundError,
    StaleSettlementError,
)
from nexledger.app.money import ZERO, has_money_scale, total
from nexledger.app.notifier import Notifier
from nexledger.app.records import (
    SETTLE_ALL,
    BalanceScope,
    DebtRecord,
    ExecutionReport,
    GroupKind,
    SettlementMode,
    SettlementStatus,
    SettlementSummary,
    SettlementTransaction,
    TransactionFailure,
)
from nexledger.app.services.access import get_group_or_404, is_admin, require_member
from nexledger.app.services.balance_service import assert_conserved, net_balances
from nexledger.app.store.base import DebtStore

logger = logging.getLogger(__name__)

_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "nexledger:settlement-transaction")

# payment_method of debts closed against an opposing debt rather than paid.
OFFSET_PAYMENT_METHOD = "offset"


# ═══════════════════════════════════════════════════════════════════════════
# Planner
# ═══════════════════════════════════════════════════════════════════════════

def _transaction_id(*parts) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, ":".join(str(p) for p in parts)))


def _validate_debts(group_id: int, debts: list[DebtRecord]) -> None:
    """Rejects input the planner cannot have been given by a healthy store."""
    for debt in debts:
        if debt.id is None:
            raise InconsistentStateError("Cannot plan over a debt that has not been stored.")
        if debt.group_id != group_id:
            raise InconsistentStateError(
                f"Debt {debt.id} belongs to group {debt.group_id}, not {group_id}."
            )
        if not debt.is_outstanding:
            raise InconsistentStateError(f"Debt {debt.id} is not outstanding.")
        if debt.debtor_id == debt.creditor_id:
            raise InconsistentStateError(f"Debt {debt.id} is a self-debt.")
        if debt.amount <= ZERO or not has_money_scale(debt.amount):
            raise InconsistentStateError(f"Debt {debt.id} has invalid amount {debt.amount}.")


def _plan_detailed(
        group_id: int,
        debts: list[DebtRecord],
        now: datetime,
) -> list[SettlementTransaction]:
    return [
        SettlementTransaction(
            id=_transaction_id(group_id, SettlementMode.DETAILED.value, debt.id, debt.amount),
            group_id=group_id,
            from_user_id=debt.debtor_id,
            to_user_id=debt.creditor_id,
            amount=debt.amount,
            mode=SettlementMode.DETAILED,
            related_debt_ids=(debt.id,),
            created_at=now,
        )
        for debt in sorted(debts, key=lambda d: d.id)
    ]


def _plan_simplified(
        group_id: int,
        debts: list[DebtRecord],
        balances: dict[int, Decimal],
        now: datetime,
) -> list[SettlementTransaction]:
    creditors = {uid: bal for uid, bal in balances.items() if bal > ZERO}
    debtors = {uid: -bal for uid, bal in balances.items() if bal < ZERO}

    transactions: list[SettlementTransaction] = []

    while creditors and debtors:
        creditor_id = min(creditors, key=lambda uid: (-creditors[uid], uid))
        debtor_id = min(debtors, key=lambda uid: (-debtors[uid], uid))
        transfer = min(creditors[creditor_id], debtors[debtor_id])

        related = tuple(sorted(
            d.id for d in debts
            if d.debtor_id == debtor_id or d.creditor_id == creditor_id
        ))
        transactions.append(SettlementTransaction(
            id=_transaction_id(
                group_id, SettlementMode.SIMPLIFIED.value, debtor_id, creditor_id, transfer,
            ),
            group_id=group_id,
            from_user_id=debtor_id,
            to_user_id=creditor_id,
            amount=transfer,
            mode=SettlementMode.SIMPLIFIED,
            related_debt_ids=related,
            created_at=now,
        ))

        creditors[creditor_id] -= transfer
        debtors[debtor_id] -= transfer
        if creditors[creditor_id] == ZERO:
            del creditors[creditor_id]
        if debtors[debtor_id] == ZERO:
            del debtors[debtor_id]

    return transactions


def plan(
        group_id: int,
        mode: SettlementMode,
        outstanding_debts: Iterable[DebtRecord],
        now: datetime | None = None,
) -> list[SettlementTransaction]:
    """
    Builds the settlement plan for a group's outstanding debts.

    Args:
        group_id:          Every debt must belong to this group.
        mode:              DETAILED or SIMPLIFIED.
        outstanding_debts: Stored, outstanding debts of the group.
        now:               created_at of the returned transactions.

    Raises:
        InconsistentStateError -- invalid debt input or conservation violated.
    """
    mode = SettlementMode(mode)
    now = now or datetime.now(timezone.utc)
    debts = list(outstanding_debts)

    _validate_debts(group_id, debts)
    balances = net_balances(debts, BalanceScope(group_id=group_id))
    assert_conserved(balances, f"group {group_id}")

    if mode == SettlementMode.DETAILED:
        transactions = _plan_detailed(group_id, debts, now)
    else:
        transactions = _plan_simplified(group_id, debts, balances, now)

    logger.debug(
        "Planned %d %s settlement(s) for group %s over %d debt(s)",
        len(transactions), mode.value, group_id, len(debts),
    )
    return transactions


def filter_for_user(
        transactions: Iterable[SettlementTransaction],
        user_id: int,
) -> list[SettlementTransaction]:
    """Keeps the transactions user_id pays or receives."""
    return [t for t in transactions if t.involves(user_id)]


# ═══════════════════════════════════════════════════════════════════════════
# Executor
# ═══════════════════════════════════════════════════════════════════════════

class SettlementExecutor:
    """
    Executes planned settlements against a DebtStore.

    One executor may be shared between threads; all state lives in the store.
    """

    def __init__(
            self,
            store: DebtStore,
            notifier: Notifier | None = None,
            clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def execute(
            self,
            group_id: int,
            mode: SettlementMode,
            selection=SETTLE_ALL,
            payment_method: str | None = None,
            notes: str | None = None,
            settled_at: datetime | None = None,
    ) -> ExecutionReport:
        """
        Settles the selected transactions of a fresh plan.

        Args:
            selection: SETTLE_ALL, or transaction ids from an earlier plan.
                       Duplicates are ignored. An id missing from the fresh
                       plan is reported as a STALE_SETTLEMENT failure.

        Returns:
            ExecutionReport with executed transactions, per-transaction
            failures and the plan that remains afterwards.
        """
        mode = SettlementMode(mode)
        settled_at = settled_at or self._clock()
        report = ExecutionReport(group_id=group_id, mode=mode, executed_at=settled_at)

        with self._store.lock_group(group_id):
            current = plan(
                group_id, mode, self._store.list_outstanding_debts(group_id=group_id), now=settled_at,
            )

            for transaction_id, transaction in _resolve_selection(current, selection):
                if transaction is None:
                    failure = TransactionFailure(
                        transaction_id,
                        ErrorCode.STALE_SETTLEMENT,
                        f"Transaction {transaction_id} is not part of the current plan.",
                    )
                    logger.warning("Settlement %s failed: %s", transaction_id, failure.message)
                    report.failures.append(failure)
                    continue

                try:
                    with self._store.atomic():
                        self._settle(transaction, payment_method, notes, settled_at)
                except (StaleSettlementError, NotFoundError) as exc:
                    logger.warning("Settlement %s failed: %s", transaction.id, exc.message)
                    report.failures.append(
                        TransactionFailure(transaction.id, exc.code, exc.message)
                    )
                    continue

                report.executed.append(replace(
                    transaction,
                    status=SettlementStatus.SETTLED,
                    executed_at=settled_at,
                ))

            if selection == SETTLE_ALL and mode == SettlementMode.SIMPLIFIED:
                self._close_netted_debts(group_id, settled_at)

            report.remaining = plan(
                group_id, mode, self._store.list_outstanding_debts(group_id=group_id), now=settled_at,
            )

        logger.info(
            "Executed %d %s settlement(s) for group %s: total=%s failed=%d remaining=%d",
            report.settled_count, mode.value, group_id,
            report.settled_total, report.failed_count, report.remaining_count,
        )
        self._notify(report)
        return report

    # ── Per-transaction settlement ─────────────────────────────────────────

    def _settle(
            self,
            transaction: SettlementTransaction,
            payment_method: str | None,
            notes: str | None,
            settled_at: datetime,
    ) -> None:
        if transaction.mode == SettlementMode.DETAILED:
            self._settle_detailed(transaction, payment_method, notes, settled_at)
        else:
            self._settle_simplified(transaction, payment_method, notes, settled_at)

    def _settle_detailed(self, transaction, payment_method, notes, settled_at) -> None:
        debt_id, = transaction.related_debt_ids
        debt = self._store.get_debt(debt_id)
        if debt is None:
            raise NotFoundError(ErrorCode.DEBT_NOT_FOUND, f"Debt {debt_id} does not exist.")
        if not debt.is_outstanding or debt.amount != transaction.amount:
            raise StaleSettlementError(
                f"Debt {debt_id} no longer matches transaction {transaction.id}."
            )
        self._store.mark_debts_settled([debt_id], settled_at, payment_method, notes)

    def _settle_simplified(self, transaction, payment_method, notes, settled_at) -> None:
        group_id = transaction.group_id
        debtor_id = transaction.from_user_id
        creditor_id = transaction.to_user_id
        amount = transaction.amount

        debts = self._store.list_outstanding_debts(group_id=group_id)
        balances = net_balances(debts)
        if balances.get(debtor_id, ZERO) > -amount or balances.get(creditor_id, ZERO) < amount:
            raise StaleSettlementError(
                f"Balances of users {debtor_id} and {creditor_id} no longer support "
                f"transaction {transaction.id}."
            )

        def settle(debt_id: int, portion: Decimal, outstanding: Decimal) -> None:
            self._settle_portion(debt_id, portion, outstanding, settled_at, payment_method, notes)

        offset_notes = f"Offset by settlement {transaction.id}"
        remaining = amount

        # 1. Direct debts, oldest first.
        for debt in debts:
            if remaining == ZERO:
                break
            if debt.debtor_id == debtor_id and debt.creditor_id == creditor_id:
                portion = min(debt.amount, remaining)
                settle(debt.id, portion, debt.amount)
                remaining -= portion

        # 2. Reroute the rest through third parties.
        related = set(transaction.related_debt_ids)

        def draw_order(debt: DebtRecord):
            return debt.id not in related, debt.id

        outgoing = sorted(
            (d for d in debts if d.debtor_id == debtor_id and d.creditor_id != creditor_id),
            key=draw_order,
        )
        incoming = sorted(
            (d for d in debts if d.creditor_id == creditor_id and d.debtor_id != debtor_id),
            key=draw_order,
        )
        out_left = [d.amount for d in outgoing]
        in_left = [d.amount for d in incoming]
        i = j = 0

        while remaining > ZERO:
            if i >= len(outgoing) or j >= len(incoming):
                raise StaleSettlementError(
                    f"Outstanding debts can no longer cover transaction {transaction.id}."
                )
            out_debt, in_debt = outgoing[i], incoming[j]
            portion = min(remaining, out_left[i], in_left[j])

            settle(out_debt.id, portion, out_left[i])
            settle(in_debt.id, portion, in_left[j])
            if out_debt.creditor_id != in_debt.debtor_id:
                # in_debt's debtor now owes out_debt's creditor; debts running
                # the other way absorb it before a new one is recorded.
                covered = self._settle_between(
                    group_id, out_debt.creditor_id, in_debt.debtor_id, portion,
                    settled_at, OFFSET_PAYMENT_METHOD, offset_notes,
                )
                if covered < portion:
                    self._store.add_debts([DebtRecord(
                        group_id=group_id,
                        debtor_id=in_debt.debtor_id,
                        creditor_id=out_debt.creditor_id,
                        amount=portion - covered,
                        notes=f"Rerouted by settlement {transaction.id}",
                    )])

            remaining -= portion
            out_left[i] -= portion
            in_left[j] -= portion
            if out_left[i] == ZERO:
                i += 1
            if in_left[j] == ZERO:
                j += 1

        # 3. Debts left running both ways between the two parties cancel out.
        self._cancel_opposing(group_id, debtor_id, creditor_id, settled_at, offset_notes)

    # ── Store helpers ──────────────────────────────────────────────────────

    def _settle_portion(self, debt_id, portion, outstanding, settled_at, payment_method, notes) -> None:
        if portion == outstanding:
            self._store.mark_debts_settled([debt_id], settled_at, payment_method, notes)
        else:
            self._store.split_debt(debt_id, portion, settled_at, payment_method, notes)

    def _settle_between(
            self,
            group_id: int,
            debtor_id: int,
            creditor_id: int,
            limit: Decimal,
            settled_at: datetime,
            payment_method: str | None,
            notes: str | None,
    ) -> Decimal:
        """Settles outstanding debtor→creditor debts, oldest first, up to limit. Returns the amount settled."""
        covered = ZERO
        for debt in self._store.list_outstanding_debts(group_id=group_id):
            if covered == limit:
                break
            if debt.debtor_id == debtor_id and debt.creditor_id == creditor_id:
                portion = min(debt.amount, limit - covered)
                self._settle_portion(debt.id, portion, debt.amount, settled_at, payment_method, notes)
                covered += portion
        return covered

    def _cancel_opposing(self, group_id, user_a, user_b, settled_at, notes) -> None:
        debts = self._store.list_outstanding_debts(group_id=group_id)
        a_to_b = total(d.amount for d in debts if (d.debtor_id, d.creditor_id) == (user_a, user_b))
        b_to_a = total(d.amount for d in debts if (d.debtor_id, d.creditor_id) == (user_b, user_a))
        offset = min(a_to_b, b_to_a)
        if offset == ZERO:
            return
        self._settle_between(group_id, user_a, user_b, offset, settled_at, OFFSET_PAYMENT_METHOD, notes)
        self._settle_between(group_id, user_b, user_a, offset, settled_at, OFFSET_PAYMENT_METHOD, notes)

    def _close_netted_debts(self, group_id: int, settled_at: datetime) -> None:
        """
        Closes outstanding debts that no longer move any balance.

        When every member's balance is zero the remaining debts form cycles
        (1→2→3→1); nobody owes anything, so they are settled as offsets.
        """
        debts = self._store.list_outstanding_debts(group_id=group_id)
        if not debts or any(bal != ZERO for bal in net_balances(debts).values()):
            return
        try:
            with self._store.atomic():
                self._store.mark_debts_settled(
                    [d.id for d in debts], settled_at, OFFSET_PAYMENT_METHOD,
                    "Offset: balances net to zero",
                )
        except StaleSettlementError as exc:
            logger.warning("Could not close netted debts in group %s: %s", group_id, exc.message)
            return
        logger.info("Closed %d netted debt(s) in group %s", len(debts), group_id)

    def _notify(self, report: ExecutionReport) -> None:
        if self._notifier is None:
            return
        for transaction in report.executed:
            try:
                self._notifier.on_settlement_executed(
                    report.group_id, transaction.from_user_id, transaction.amount,
                )
            except Exception:
                logger.exception(
                    "Notifier failed for settlement %s in group %s",
                    transaction.id, report.group_id,
                )


def _resolve_selection(
        transactions: list[SettlementTransaction],
        selection,
) -> list[tuple[str, SettlementTransaction | None]]:
    if selection == SETTLE_ALL:
        return [(t.id, t) for t in transactions]
    by_id = {t.id: t for t in transactions}
    return [(tid, by_id.get(tid)) for tid in dict.fromkeys(selection)]


# ═══════════════════════════════════════════════════════════════════════════
# Summary
# ═══════════════════════════════════════════════════════════════════════════

def summarize_debts(
        debts: Iterable[DebtRecord],
        group_id: int | None = None,
        user_id: int | None = None,
) -> SettlementSummary:
    """
    Settlement statistics over non-voided debts in scope.

    The settlement delay of a partial-settlement child is measured from its
    parent's creation, which is when the obligation actually arose.
    """
    scope = BalanceScope(group_id=group_id, user_id=user_id)
    live = [d for d in debts if d.voided_at is None and scope.includes(d)]
    created = {d.id: d.created_at for d in live}

    settled = [d for d in live if d.settled_at is not None]
    unsettled = [d for d in live if d.settled_at is None]

    hours: list[float] = []
    for debt in settled:
        origin = created.get(debt.parent_debt_id) or debt.created_at
        if origin is not None:
            hours.append((debt.settled_at - origin).total_seconds() / 3600)

    return SettlementSummary(
        group_id=group_id,
        user_id=user_id,
        total_debts=len(live),
        settled_debts=len(settled),
        unsettled_debts=len(unsettled),
        total_amount=total(d.amount for d in live),
        settled_amount=total(d.amount for d in settled),
        unsettled_amount=total(d.amount for d in unsettled),
        last_settled_at=max((d.settled_at for d in settled), default=None),
        average_settlement_hours=round(sum(hours) / len(hours), 2) if hours else 0.0,
    )


# ═══════════════════════════════════════════════════════════════════════════
# HTTP wrappers
# ═══════════════════════════════════════════════════════════════════════════

def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def transaction_to_dict(transaction: SettlementTransaction) -> dict:
    return {
        "id": transaction.id,
        "group_id": transaction.group_id,
        "from_user_id": transaction.from_user_id,
        "to_user_id": transaction.to_user_id,
        "amount": str(transaction.amount),
        "mode": transaction.mode.value,
        "status": transaction.status.value,
        "related_debt_ids": list(transaction.related_debt_ids),
        "created_at": _isoformat(transaction.created_at),
        "executed_at": _isoformat(transaction.executed_at),
    }


def _sql_store(session: Session):
    from nexledger.app.store.sql import SqlAlchemyDebtStore  # local import to avoid circular dep
    return SqlAlchemyDebtStore(session)


def get_available_settlements(
        group_id: int,
        caller_id: int,
        session: Session,
        mode: SettlementMode | None = None,
        default_mode: SettlementMode = SettlementMode.SIMPLIFIED,
) -> dict:
    """
    Builds the payload for GET /groups/:id/settlements.

    mode defaults to the group's configured settlement mode, then to
    default_mode. In a PERSONAL
    group a non-admin only sees transactions they are party to.
    """
    group = get_group_or_404(group_id, session)
    membership = require_member(group_id, caller_id, session)
    mode = SettlementMode(mode or group.settlement_mode or default_mode)

    transactions = plan(
        group_id, mode, _sql_store(session).list_outstanding_debts(group_id=group_id),
    )
    if group.kind == GroupKind.PERSONAL and not is_admin(membership):
        transactions = filter_for_user(transactions, caller_id)

    return {
        "group_id": group_id,
        "mode": mode.value,
        "currency": group.currency,
        "transactions": [transaction_to_dict(t) for t in transactions],
        "count": len(transactions),
        "total": str(total(t.amount for t in transactions)),
    }


def execute_settlements(
        group_id: int,
        caller_id: int,
        data: dict,
        session: Session,
        notifier: Notifier | None = None,
        default_mode: SettlementMode = SettlementMode.SIMPLIFIED,
) -> dict:
    """
    Executes settlements for POST /groups/:id/settlements/execute.

    Args:
        data: Validated dict from ExecuteSettlementSchema.
              Keys: mode (SettlementMode | None), transaction_ids (list | None,
              None means all), payment_method, notes,
              settled_at (aware datetime | None, defaults to now).

    PERSONAL groups: only an admin may settle everything; a member may only
    select transactions they pay or receive (FORBIDDEN otherwise). Ids are
    derived from the parties, so an id that is in the plan now and in the
    fresh plan under the lock names the same two users.
    """
    group = get_group_or_404(group_id, session)
    membership = require_member(group_id, caller_id, session)
    mode = SettlementMode(data.get("mode") or group.settlement_mode or default_mode)
    selection = data.get("transaction_ids")
    restricted = group.kind == GroupKind.PERSONAL and not is_admin(membership)

    store = _sql_store(session)

    if restricted:
        if selection is None:
            raise AppError(
                ErrorCode.FORBIDDEN,
                "Only a group admin may settle every transaction of a personal group.",
                403,
            )
        current = plan(group_id, mode, store.list_outstanding_debts(group_id=group_id))
        foreign = [t.id for t in current if t.id in selection and not t.involves(caller_id)]
        if foreign:
            raise AppError(
                ErrorCode.FORBIDDEN,
                f"You are not a party to transaction {foreign[0]}.",
                403,
                field="transaction_ids",
            )

    settled_at = data.get("settled_at")
    if settled_at is not None:
        settled_at = settled_at.astimezone(timezone.utc)

    executor = SettlementExecutor(store, notifier=notifier)
    report = executor.execute(
        group_id,
        mode,
        selection=SETTLE_ALL if selection is None else selection,
        payment_method=data.get("payment_method"),
        notes=data.get("notes"),
        settled_at=settled_at,
    )

    remaining = report.remaining
    if restricted:
        remaining = filter_for_user(remaining, caller_id)

    return {
        "group_id": group_id,
        "mode": mode.value,
        "executed_at": _isoformat(report.executed_at),
        "settled_count": report.settled_count,
        "settled_total": str(report.settled_total),
        "failed_count": report.failed_count,
        "remaining_count": len(remaining),
        "remaining_total": str(total(t.amount for t in remaining)),
        "executed": [transaction_to_dict(t) for t in report.executed],
        "failures": [
            {"transaction_id": f.transaction_id, "code": f.code, "message": f.message}
            for f in report.failures
        ],
        "remaining": [transaction_to_dict(t) for t in remaining],
    }


def _visible_debts(
        caller_id: int,
        session: Session,
        group_id: int | None,
        user_id: int | None,
        what: str,
) -> tuple[list[DebtRecord], int | None]:
    """
    Loads the debts a summary or history request may see.

    Returns the debts and the user they are scoped to (None for a whole group).
    """
    store = _sql_store(session)

    if group_id is not None:
        group = get_group_or_404(group_id, session)
        membership = require_member(group_id, caller_id, session)
        scope_user = None
        if group.kind == GroupKind.PERSONAL and not is_admin(membership):
            scope_user = caller_id
        return store.list_debts(group_id=group_id, user_id=scope_user), scope_user

    if user_id != caller_id:
        raise AppError(ErrorCode.FORBIDDEN, f"You may only view your own {what}.", 403)
    return store.list_debts(user_id=user_id), user_id


def get_settlement_summary(
        caller_id: int,
        session: Session,
        group_id: int | None = None,
        user_id: int | None = None,
) -> dict:
    """
    Builds the payload for the group and user settlement summary endpoints.

    Exactly one of group_id / user_id is given. A user summary is only
    readable by that user. In a PERSONAL group a non-admin's group summary
    covers only their own debts.
    """
    debts, scope_user = _visible_debts(caller_id, session, group_id, user_id, "settlement summary")
    summary = summarize_debts(debts, group_id=group_id, user_id=scope_user)

    return {
        "group_id": summary.group_id,
        "user_id": summary.user_id,
        "total_debts": summary.total_debts,
        "settled_debts": summary.settled_debts,
        "unsettled_debts": summary.unsettled_debts,
        "total_amount": str(summary.total_amount),
        "settled_amount": str(summary.settled_amount),
        "unsettled_amount": str(summary.unsettled_amount),
        "last_settled_at": _isoformat(summary.last_settled_at),
        "average_settlement_hours": summary.average_settlement_hours,
    }


def settlement_history(debts: Iterable[DebtRecord]) -> list[DebtRecord]:
    """Settled debts, most recently settled first (ties: higher id first)."""
    return sorted(
        (d for d in debts if d.is_settled),
        key=lambda d: (d.settled_at, d.id),
        reverse=True,
    )


def settled_debt_to_dict(debt: DebtRecord) -> dict:
    return {
        "id": debt.id,
        "group_id": debt.group_id,
        "expense_id": debt.expense_id,
        "from_user_id": debt.debtor_id,
        "to_user_id": debt.creditor_id,
        "amount": str(debt.amount),
        "settled_at": _isoformat(debt.settled_at),
        "payment_method": debt.payment_method,
        "notes": debt.notes,
        "parent_debt_id": debt.parent_debt_id,
    }


def get_settlement_history(
        caller_id: int,
        session: Session,
        group_id: int | None = None,
        user_id: int | None = None,
) -> dict:
    """
    Builds the payload for the group and user settlement history endpoints.

    Same access rules as get_settlement_summary(). Partial settlements show
    up as the settled child rows carrying parent_debt_id.
    """
    debts, scope_user = _visible_debts(caller_id, session, group_id, user_id, "settlement history")
    settled = settlement_history(debts)
    return {
        "group_id": group_id,
        "user_id": scope_user,
        "count": len(settled),
        "total_amount": str(total(d.amount for d in settled)),
        "settlements": [settled_debt_to_dict(d) for d in settled],
    }
