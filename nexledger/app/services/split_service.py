"""
services/split_service.py — Split calculator.

Turns an expense amount + split policy + participant list into per-participant
share amounts that sum EXACTLY to the expense amount. No leftover cents.

Policies:
  EQUALLY     Integer-cent division. The `cents mod n` leftover cents go one
              by one to the first participants in input order, so identical
              input always yields identical output (idempotent recalculation).
  PERCENTAGE  Each share is amount * pct / 100 rounded HALF_UP to cents. The
              rounding residual (may be negative) is applied to the
              participant with the largest percentage (first one on ties).
  AMOUNT      Shares are taken verbatim; only the sum is validated.

Pure function. No Flask, no session, no store. Raises InvalidSplitError before
anything is written.
"""

from __future__ import annotations

from decimal import Decimal

from nexledger.app.errors import InvalidSplitError
from nexledger.app.money import HUNDRED, ZERO, from_cents, has_money_scale, quantize_money, to_cents, total
from nexledger.app.records import Participant, SplitPolicy, SplitSettings


_DEFAULT_SETTINGS = SplitSettings()


# ── Validation helpers ─────────────────────────────────────────────────────

def _validate_amount(amount: Decimal) -> None:
    if amount <= ZERO:
        raise InvalidSplitError(f"Expense amount must be positive, got {amount}.", field="amount")
    if not has_money_scale(amount):
        raise InvalidSplitError(
            f"Expense amount {amount} has more than 2 decimal places.",
            field="amount",
        )


def _validate_unique(participants: list[Participant]) -> None:
    seen: set[int] = set()
    for p in participants:
        if p.user_id in seen:
            raise InvalidSplitError(f"User {p.user_id} appears more than once in the split.")
        seen.add(p.user_id)


def _resolve_participants(
        participants: list[Participant],
        policy: SplitPolicy,
        payer_participates: bool,
        payer_id: int | None,
) -> list[Participant]:
    """
    Drops the payer when they do not take part in the split.

    For EQUALLY the payer is silently excluded. For PERCENTAGE and AMOUNT an
    explicit share for an excluded payer is contradictory and rejected.
    """
    if payer_participates or payer_id is None:
        return list(participants)

    if policy != SplitPolicy.EQUALLY and any(p.user_id == payer_id for p in participants):
        raise InvalidSplitError(
            f"Payer {payer_id} does not participate in the split but was given a share."
        )
    return [p for p in participants if p.user_id != payer_id]


# ── Policies ───────────────────────────────────────────────────────────────

def _split_equally(amount: Decimal, participants: list[Participant]) -> dict[int, Decimal]:
    n = len(participants)
    cents = to_cents(amount)
    base, leftover = divmod(cents, n)

    shares: dict[int, Decimal] = {}
    for index, p in enumerate(participants):
        shares[p.user_id] = from_cents(base + 1 if index < leftover else base)
    return shares


def _split_by_percentage(
        amount: Decimal,
        participants: list[Participant],
        tolerance: Decimal,
) -> dict[int, Decimal]:
    for p in participants:
        if p.percentage is None:
            raise InvalidSplitError(f"User {p.user_id} has no percentage.")
        if p.percentage < ZERO:
            raise InvalidSplitError(f"User {p.user_id} has a negative percentage ({p.percentage}).")

    pct_sum = sum((p.percentage for p in participants), Decimal("0"))
    if abs(pct_sum - HUNDRED) > tolerance:
        raise InvalidSplitError(f"Percentages sum to {pct_sum}, expected 100.")

    shares = {
        p.user_id: quantize_money(amount * p.percentage / HUNDRED)
        for p in participants
    }

    residual = amount - total(shares.values())
    if residual != ZERO:
        # max() returns the first maximal element, which keeps input order on ties.
        anchor = max(participants, key=lambda p: p.percentage)
        adjusted = shares[anchor.user_id] + residual
        if adjusted < ZERO:
            raise InvalidSplitError(
                f"Rounding residual {residual} cannot be absorbed by user {anchor.user_id}."
            )
        shares[anchor.user_id] = adjusted

    return shares


def _split_by_amount(amount: Decimal, participants: list[Participant]) -> dict[int, Decimal]:
    shares: dict[int, Decimal] = {}
    for p in participants:
        if p.amount is None:
            raise InvalidSplitError(f"User {p.user_id} has no amount.")
        if p.amount < ZERO:
            raise InvalidSplitError(f"User {p.user_id} has a negative amount ({p.amount}).")
        if not has_money_scale(p.amount):
            raise InvalidSplitError(
                f"Amount {p.amount} for user {p.user_id} has more than 2 decimal places."
            )
        shares[p.user_id] = quantize_money(p.amount)

    share_sum = total(shares.values())
    if share_sum != amount:
        raise InvalidSplitError(
            f"Split amounts ({share_sum}) do not equal expense amount ({amount})."
        )
    return shares


# ── Public API ─────────────────────────────────────────────────────────────

def compute_splits(
        amount: Decimal,
        policy: SplitPolicy,
        participants: list[Participant],
        payer_participates: bool = True,
        payer_id: int | None = None,
        settings: SplitSettings | None = None,
) -> dict[int, Decimal]:
    """
    Computes each participant's share of an expense.

    Args:
        amount:             Expense total, Decimal with at most 2 dp.
        policy:             EQUALLY, PERCENTAGE or AMOUNT.
        participants:       Ordered participants. Order decides who receives
                            leftover cents (EQUALLY) and breaks ties (PERCENTAGE).
        payer_participates: When False, payer_id is excluded from the split.
        payer_id:           Needed only when payer_participates is False.
        settings:           Explicit configuration (percentage tolerance).

    Returns:
        {user_id: share} in participant order. sum(values) == amount exactly.

    Raises:
        InvalidSplitError for any invalid input.
    """
    settings = settings or _DEFAULT_SETTINGS
    amount = Decimal(amount)

    _validate_amount(amount)
    _validate_unique(participants)

    resolved = _resolve_participants(participants, policy, payer_participates, payer_id)
    if not resolved:
        raise InvalidSplitError("An expense must be split between at least one participant.")

    if policy == SplitPolicy.EQUALLY:
        shares = _split_equally(amount, resolved)
    elif policy == SplitPolicy.PERCENTAGE:
        shares = _split_by_percentage(amount, resolved, settings.percentage_tolerance)
    elif policy == SplitPolicy.AMOUNT:
        shares = _split_by_amount(amount, resolved)
    else:
        raise InvalidSplitError(f"Unknown split policy {policy!r}.", field="split_policy")

    # Must always hold; a failure here is a programming error, not bad input.
    if total(shares.values()) != amount:
        raise InvalidSplitError(
            f"Split computation produced sum {total(shares.values())} for amount {amount}."
        )

    return shares
