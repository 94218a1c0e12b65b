"""
notifier.py — Post-commit settlement notifications.

The executor calls on_settlement_executed() once per executed transaction,
after the group lock is released. Implementations must not assume they can
roll anything back: by the time they are called the debts are settled.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):

    def on_settlement_executed(self, group_id: int, user_id: int, amount: Decimal) -> None:
        ...


class LoggingNotifier:
    """Default notifier. Writes one info line per executed settlement."""

    def on_settlement_executed(self, group_id: int, user_id: int, amount: Decimal) -> None:
        logger.info(
            "Settlement executed: group=%s payer=%s amount=%s",
            group_id, user_id, amount,
        )
