"""
store/memory.py — In-memory debt arena.

Records are frozen dataclasses; every mutation replaces the stored record,
so callers never hold a reference that changes under them.

Locking:
  _lock        store-wide RLock around every read/write and around atomic()
  _group_locks one Lock per group, handed out by lock_group()
"""

from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from nexledger.app.errors import ErrorCode, InconsistentStateError, NotFoundError, StaleSettlementError
from nexledger.app.money import ZERO
from nexledger.app.records import BalanceScope, DebtRecord


class InMemoryDebtStore:

    def __init__(self, debts: list[DebtRecord] | None = None) -> None:
        self._debts: dict[int, DebtRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self._group_locks: dict[int, threading.Lock] = defaultdict(threading.Lock)
        if debts:
            self.add_debts(debts)

    # ── Reads ──────────────────────────────────────────────────────────────

    def list_outstanding_debts(
            self,
            group_id: int | None = None,
            user_id: int | None = None,
    ) -> list[DebtRecord]:
        return [d for d in self.list_debts(group_id, user_id) if d.settled_at is None]

    def list_debts(
            self,
            group_id: int | None = None,
            user_id: int | None = None,
    ) -> list[DebtRecord]:
        scope = BalanceScope(group_id=group_id, user_id=user_id)
        with self._lock:
            return [
                d for _, d in sorted(self._debts.items())
                if d.voided_at is None and scope.includes(d)
            ]

    def get_debt(self, debt_id: int) -> DebtRecord | None:
        with self._lock:
            return self._debts.get(debt_id)

    # ── Writes ─────────────────────────────────────────────────────────────

    def add_debts(self, debts: list[DebtRecord]) -> list[DebtRecord]:
        _validate_new_debts(debts)
        now = datetime.now(timezone.utc)
        stored: list[DebtRecord] = []
        with self._lock:
            for debt in debts:
                record = replace(
                    debt,
                    id=next(self._ids),
                    created_at=debt.created_at or now,
                )
                self._debts[record.id] = record
                stored.append(record)
        return stored

    def void_debts(self, expense_id: int, voided_at: datetime) -> int:
        with self._lock:
            targets = [
                d for d in self._debts.values()
                if d.expense_id == expense_id and d.is_outstanding
            ]
            for debt in targets:
                self._debts[debt.id] = replace(debt, voided_at=voided_at)
            return len(targets)

    def persist_debts(self, expense_id: int, debts: list[DebtRecord]) -> list[DebtRecord]:
        _validate_new_debts(debts)
        with self._lock:
            self.void_debts(expense_id, datetime.now(timezone.utc))
            return self.add_debts([replace(d, expense_id=expense_id) for d in debts])

    def mark_debts_settled(
            self,
            debt_ids: list[int],
            settled_at: datetime,
            payment_method: str | None = None,
            notes: str | None = None,
    ) -> None:
        with self._lock:
            # Check every id first so a stale id leaves nothing half-settled.
            for debt_id in debt_ids:
                self._require_outstanding(debt_id)
            for debt_id in debt_ids:
                self._debts[debt_id] = replace(
                    self._debts[debt_id],
                    settled_at=settled_at,
                    payment_method=payment_method,
                    notes=notes,
                )

    def split_debt(
            self,
            debt_id: int,
            settled_portion: Decimal,
            settled_at: datetime,
            payment_method: str | None = None,
            notes: str | None = None,
    ) -> tuple[DebtRecord, DebtRecord]:
        with self._lock:
            live = self._require_outstanding(debt_id)
            if not ZERO < settled_portion < live.amount:
                raise StaleSettlementError(
                    f"Cannot settle {settled_portion} of debt {debt_id}; "
                    f"outstanding amount is {live.amount}."
                )
            live = replace(live, amount=live.amount - settled_portion)
            self._debts[debt_id] = live
            settled = replace(
                live,
                id=next(self._ids),
                amount=settled_portion,
                settled_at=settled_at,
                payment_method=payment_method,
                notes=notes,
                parent_debt_id=debt_id,
                created_at=datetime.now(timezone.utc),
            )
            self._debts[settled.id] = settled
            return live, settled

    # ── Units of work ──────────────────────────────────────────────────────

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = dict(self._debts)
            try:
                yield
            except BaseException:
                self._debts = snapshot
                raise

    @contextmanager
    def lock_group(self, group_id: int):
        with self._lock:
            group_lock = self._group_locks[group_id]
        with group_lock:
            yield

    # ── Internals ──────────────────────────────────────────────────────────

    def _require_outstanding(self, debt_id: int) -> DebtRecord:
        debt = self._debts.get(debt_id)
        if debt is None:
            raise NotFoundError(ErrorCode.DEBT_NOT_FOUND, f"Debt {debt_id} does not exist.")
        if not debt.is_outstanding:
            raise StaleSettlementError(f"Debt {debt_id} is no longer outstanding.")
        return debt


def _validate_new_debts(debts: list[DebtRecord]) -> None:
    for debt in debts:
        if debt.debtor_id == debt.creditor_id or debt.amount <= ZERO:
            raise InconsistentStateError(
                f"Refusing to store debt {debt.debtor_id}->{debt.creditor_id} "
                f"of {debt.amount}."
            )
