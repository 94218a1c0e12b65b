"""Debt store implementations. See store/base.py for the contract."""

from nexledger.app.store.base import DebtStore
from nexledger.app.store.memory import InMemoryDebtStore

__all__ = ["DebtStore", "InMemoryDebtStore"]
