"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file (request shape, 400):
      - Field types, lengths, enum values, decimal precision
      - DUPLICATE_PARTICIPANT — same user_id twice in participants
      - participants required for PERCENTAGE / AMOUNT policies, and each
        entry must carry the value its policy reads
      - Non-empty-after-trim description
  - services/split_service.py (422 INVALID_SPLIT):
      - percentages summing to 100, amounts summing to the expense amount
  - services/expense_service.py (needs the database):
      - PAYER_NOT_MEMBER, PARTICIPANT_NOT_MEMBER, CURRENCY_MISMATCH,
        EXPENSE_DELETED, FORBIDDEN

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates_schema,
)

from nexledger.app.errors import ErrorCode
from nexledger.app.money import HUNDRED, ZERO, has_money_scale
from nexledger.app.records import SplitPolicy


# ── Shared validators ──────────────────────────────────────────────────────
#
# Amounts with more than 2 decimal places are REJECTED with
# INVALID_AMOUNT_PRECISION, never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """Strictly positive, at most 2 decimal places."""
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero.")
    if not has_money_scale(value):
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_share_amount(value: Decimal) -> None:
    """A participant's explicit share: zero allowed, at most 2 decimal places."""
    if value < ZERO:
        raise ValidationError("Share amount must not be negative.")
    if not has_money_scale(value):
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_percentage(value: Decimal) -> None:
    if value < ZERO or value > HUNDRED:
        raise ValidationError("Percentage must be between 0 and 100.")
    if value.as_tuple().exponent < -4:
        raise ValidationError("Percentage must have at most 4 decimal places.")


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or whitespace only.
    Mirrors the DB CHECK(LENGTH(TRIM(description)) > 0) constraint.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _validate_participant_list(participants: list[dict] | None, policy: SplitPolicy | None) -> None:
    """
    Shared create/patch rules for the participants array.

    policy is the policy the participants will be split under; None when a
    PATCH does not change the policy (the stored one is unknown here).
    """
    if participants is None:
        if policy in (SplitPolicy.PERCENTAGE, SplitPolicy.AMOUNT):
            raise ValidationError(
                {"participants": [f"participants is required when split_policy is '{policy.value}'."]}
            )
        return

    user_ids = [p["user_id"] for p in participants]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError({"participants": [ErrorCode.DUPLICATE_PARTICIPANT]})

    if policy == SplitPolicy.PERCENTAGE:
        missing = [p["user_id"] for p in participants if p.get("percentage") is None]
        if missing:
            raise ValidationError(
                {"participants": [f"percentage is required for user {missing[0]}."]}
            )
    elif policy == SplitPolicy.AMOUNT:
        missing = [p["user_id"] for p in participants if p.get("amount") is None]
        if missing:
            raise ValidationError(
                {"participants": [f"amount is required for user {missing[0]}."]}
            )


# ── Sub-schema: one entry in the `participants` array ─────────────────────

class ParticipantSchema(Schema):
    """
    One participant. percentage is read for PERCENTAGE splits, amount for
    AMOUNT splits. Membership is checked in expense_service.py.
    """

    user_id = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    percentage = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_percentage,
    )

    amount = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_share_amount,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    split_policy='equally' without participants splits between every
    current group member. currency defaults to the group's currency.
    """

    paid_by_user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    currency = fields.Str(
        load_default=None,
        validate=validate.Regexp(r"^[A-Z]{3}$", error="currency must be a 3-letter ISO code."),
    )

    split_policy = fields.Enum(
        SplitPolicy,
        load_default=SplitPolicy.EQUALLY,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_POLICY},
    )

    payer_participates = fields.Bool(load_default=True)

    participants = fields.List(
        fields.Nested(ParticipantSchema),
        load_default=None,
        validate=validate.Length(min=1, error="participants must not be empty."),
    )

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        _validate_participant_list(
            data.get("participants"),
            data.get("split_policy", SplitPolicy.EQUALLY),
        )


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    All fields are optional; omitted fields keep their stored value. When
    split_policy changes to 'percentage' or 'amount' the participants must
    be resent with the values that policy reads.
    """

    paid_by_user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="paid_by_user_id must be a positive integer."),
    )

    description = fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    amount = fields.Decimal(validate=_validate_monetary_amount)

    currency = fields.Str(
        validate=validate.Regexp(r"^[A-Z]{3}$", error="currency must be a 3-letter ISO code."),
    )

    split_policy = fields.Enum(
        SplitPolicy,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_POLICY},
    )

    payer_participates = fields.Bool()

    participants = fields.List(
        fields.Nested(ParticipantSchema),
        validate=validate.Length(min=1, error="participants must not be empty."),
    )

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        policy = data.get("split_policy")
        participants = data.get("participants")
        if participants is None and policy is None:
            return
        _validate_participant_list(participants, policy)
