"""
store/base.py — The debt store contract consumed by the engine.

Two implementations ship with the code base:
  InMemoryDebtStore   (store/memory.py) — an arena of DebtRecords, used by
                                          unit tests and embedded callers.
  SqlAlchemyDebtStore (store/sql.py)    — the `debts` table via a Session.

Concurrency contract:
  - lock_group(group_id) is the per-group serialization boundary. The
    settlement executor holds it for the whole plan → settle → re-plan cycle.
  - atomic() is a unit of work for one settlement transaction. An exception
    inside it undoes every write made inside it.
  - mark_debts_settled() and split_debt() are conditional on the debt still
    being outstanding (settled_at IS NULL). Losing that race raises
    StaleSettlementError; the debt is never settled twice.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from nexledger.app.records import DebtRecord


class DebtStore(Protocol):

    def list_outstanding_debts(
            self,
            group_id: int | None = None,
            user_id: int | None = None,
    ) -> list[DebtRecord]:
        """Outstanding (not settled, not voided) debts, ascending id."""
        ...

    def list_debts(
            self,
            group_id: int | None = None,
            user_id: int | None = None,
    ) -> list[DebtRecord]:
        """Every non-voided debt, settled or not, ascending id."""
        ...

    def get_debt(self, debt_id: int) -> DebtRecord | None:
        ...

    def persist_debts(self, expense_id: int, debts: list[DebtRecord]) -> list[DebtRecord]:
        """Voids the expense's outstanding debts, then stores `debts`."""
        ...

    def void_debts(self, expense_id: int, voided_at: datetime) -> int:
        """Voids the expense's outstanding debts. Returns how many were voided."""
        ...

    def add_debts(self, debts: list[DebtRecord]) -> list[DebtRecord]:
        ...

    def mark_debts_settled(
            self,
            debt_ids: list[int],
            settled_at: datetime,
            payment_method: str | None = None,
            notes: str | None = None,
    ) -> None:
        ...

    def split_debt(
            self,
            debt_id: int,
            settled_portion: Decimal,
            settled_at: datetime,
            payment_method: str | None = None,
            notes: str | None = None,
    ) -> tuple[DebtRecord, DebtRecord]:
        """
        Settles part of a debt.

        Reduces the live debt by settled_portion and records a new settled
        debt for the covered portion (parent_debt_id = live debt id).
        Returns (live_debt, settled_debt).
        """
        ...

    def atomic(self) -> AbstractContextManager[None]:
        ...

    def lock_group(self, group_id: int) -> AbstractContextManager[None]:
        ...
