"""
store/sql.py — Debt store backed by the `debts` table.

Layer rules:
  - Receives a SQLAlchemy Session; knows nothing about Flask or HTTP.
  - Returns DebtRecord dataclasses, never ORM objects, so the engine cannot
    rely on lazy loading or the identity map.
  - Writes only flush. Commits happen in lock_group() (settlement execution)
    or in the route (expense writes).

Optimistic concurrency:
  Every settlement write is `UPDATE debts ... WHERE id = :id AND
  settled_at IS NULL AND voided_at IS NULL`. A rowcount lower than expected
  means another transaction got there first → StaleSettlementError. The
  surrounding atomic() savepoint is then rolled back.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from nexledger.app.errors import ErrorCode, InconsistentStateError, NotFoundError, StaleSettlementError
from nexledger.app.models.debt import Debt
from nexledger.app.models.group import Group
from nexledger.app.money import ZERO
from nexledger.app.records import DebtRecord


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; every timestamp written here is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: Debt) -> DebtRecord:
    return DebtRecord(
        id=row.id,
        group_id=row.group_id,
        debtor_id=row.debtor_id,
        creditor_id=row.creditor_id,
        amount=row.amount,
        expense_id=row.expense_id,
        settled_at=_as_utc(row.settled_at),
        voided_at=_as_utc(row.voided_at),
        payment_method=row.payment_method,
        notes=row.notes,
        parent_debt_id=row.parent_debt_id,
        created_at=_as_utc(row.created_at),
    )


class SqlAlchemyDebtStore:

    def __init__(self, session: Session) -> None:
        self._session = session

    # ── Reads ──────────────────────────────────────────────────────────────

    def _select(self, group_id: int | None, user_id: int | None):
        stmt = select(Debt).where(Debt.voided_at.is_(None))
        if group_id is not None:
            stmt = stmt.where(Debt.group_id == group_id)
        if user_id is not None:
            stmt = stmt.where(or_(Debt.debtor_id == user_id, Debt.creditor_id == user_id))
        # populate_existing: rows touched by bulk UPDATEs in this session must be re-read.
        return stmt.order_by(Debt.id).execution_options(populate_existing=True)

    def list_outstanding_debts(
            self,
            group_id: int | None = None,
            user_id: int | None = None,
    ) -> list[DebtRecord]:
        stmt = self._select(group_id, user_id).where(Debt.settled_at.is_(None))
        return [_to_record(row) for row in self._session.execute(stmt).scalars().all()]

    def list_debts(
            self,
            group_id: int | None = None,
            user_id: int | None = None,
    ) -> list[DebtRecord]:
        stmt = self._select(group_id, user_id)
        return [_to_record(row) for row in self._session.execute(stmt).scalars().all()]

    def get_debt(self, debt_id: int) -> DebtRecord | None:
        row = self._session.get(Debt, debt_id, populate_existing=True)
        return _to_record(row) if row is not None else None

    # ── Writes ─────────────────────────────────────────────────────────────

    def add_debts(self, debts: list[DebtRecord]) -> list[DebtRecord]:
        now = datetime.now(timezone.utc)
        rows: list[Debt] = []
        for debt in debts:
            if debt.debtor_id == debt.creditor_id or debt.amount <= ZERO:
                raise InconsistentStateError(
                    f"Refusing to store debt {debt.debtor_id}->{debt.creditor_id} "
                    f"of {debt.amount}."
                )
            row = Debt(
                group_id=debt.group_id,
                debtor_id=debt.debtor_id,
                creditor_id=debt.creditor_id,
                amount=debt.amount,
                expense_id=debt.expense_id,
                settled_at=debt.settled_at,
                payment_method=debt.payment_method,
                notes=debt.notes,
                parent_debt_id=debt.parent_debt_id,
                created_at=debt.created_at or now,
            )
            self._session.add(row)
            rows.append(row)
        self._session.flush()
        return [_to_record(row) for row in rows]

    def void_debts(self, expense_id: int, voided_at: datetime) -> int:
        result = self._session.execute(
            update(Debt)
            .where(
                Debt.expense_id == expense_id,
                Debt.settled_at.is_(None),
                Debt.voided_at.is_(None),
            )
            .values(voided_at=voided_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def persist_debts(self, expense_id: int, debts: list[DebtRecord]) -> list[DebtRecord]:
        self.void_debts(expense_id, datetime.now(timezone.utc))
        return self.add_debts([
            DebtRecord(
                group_id=d.group_id,
                debtor_id=d.debtor_id,
                creditor_id=d.creditor_id,
                amount=d.amount,
                expense_id=expense_id,
            )
            for d in debts
        ])

    def mark_debts_settled(
            self,
            debt_ids: list[int],
            settled_at: datetime,
            payment_method: str | None = None,
            notes: str | None = None,
    ) -> None:
        ids = list(dict.fromkeys(debt_ids))
        if not ids:
            return
        result = self._session.execute(
            update(Debt)
            .where(
                Debt.id.in_(ids),
                Debt.settled_at.is_(None),
                Debt.voided_at.is_(None),
            )
            .values(settled_at=settled_at, payment_method=payment_method, notes=notes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            self._raise_for_missing(ids)
            raise StaleSettlementError(
                f"{len(ids) - result.rowcount} of debts {ids} are no longer outstanding."
            )

    def split_debt(
            self,
            debt_id: int,
            settled_portion: Decimal,
            settled_at: datetime,
            payment_method: str | None = None,
            notes: str | None = None,
    ) -> tuple[DebtRecord, DebtRecord]:
        if settled_portion <= ZERO:
            raise StaleSettlementError(f"Cannot settle {settled_portion} of debt {debt_id}.")

        result = self._session.execute(
            update(Debt)
            .where(
                Debt.id == debt_id,
                Debt.settled_at.is_(None),
                Debt.voided_at.is_(None),
                Debt.amount > settled_portion,
            )
            .values(amount=Debt.amount - settled_portion)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._raise_for_missing([debt_id])
            raise StaleSettlementError(
                f"Debt {debt_id} is no longer outstanding or is smaller than {settled_portion}."
            )

        live = self.get_debt(debt_id)
        settled, = self.add_debts([
            DebtRecord(
                group_id=live.group_id,
                debtor_id=live.debtor_id,
                creditor_id=live.creditor_id,
                amount=settled_portion,
                expense_id=live.expense_id,
                settled_at=settled_at,
                payment_method=payment_method,
                notes=notes,
                parent_debt_id=debt_id,
            )
        ])
        return live, settled

    # ── Units of work ──────────────────────────────────────────────────────

    @contextmanager
    def atomic(self):
        with self._session.begin_nested():
            yield

    @contextmanager
    def lock_group(self, group_id: int):
        """
        Row-locks the group for the duration of the block, then commits.

        The FOR UPDATE lock is what serializes concurrent executions across
        processes. It is released by the commit (or rollback) at block exit.
        """
        locked = self._session.execute(
            select(Group.id).where(Group.id == group_id).with_for_update()
        ).scalar_one_or_none()
        if locked is None:
            raise NotFoundError(ErrorCode.GROUP_NOT_FOUND, f"Group {group_id} does not exist.")
        try:
            yield
        except BaseException:
            self._session.rollback()
            raise
        self._session.commit()

    # ── Internals ──────────────────────────────────────────────────────────

    def _raise_for_missing(self, debt_ids: list[int]) -> None:
        found = set(self._session.execute(select(Debt.id).where(Debt.id.in_(debt_ids))).scalars())
        missing = [i for i in debt_ids if i not in found]
        if missing:
            raise NotFoundError(ErrorCode.DEBT_NOT_FOUND, f"Debt {missing[0]} does not exist.")
