"""
schemas/settlement_schema.py — Marshmallow schemas for settlement endpoints.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validate, validates

from nexledger.app.errors import ErrorCode
from nexledger.app.records import SETTLE_ALL, SettlementMode


def _settlement_mode_field(**kwargs) -> fields.Enum:
    return fields.Enum(
        SettlementMode,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SETTLEMENT_MODE},
        **kwargs,
    )


class SettlementQuerySchema(Schema):
    """GET /groups/:id/settlements?mode=simplified|detailed (default: group setting)"""

    mode = _settlement_mode_field(load_default=None)


class ExecuteSettlementSchema(Schema):
    """
    POST /groups/:id/settlements/execute

    transaction_ids is either the string "all" or a list of ids returned by
    GET /groups/:id/settlements. Omitting it means "all". It is loaded as
    None for "all" and as a list otherwise.

    settled_at must carry a UTC offset; it defaults to the time of execution.
    """

    mode = _settlement_mode_field(load_default=None)

    transaction_ids = fields.Raw(load_default=None)

    payment_method = fields.Str(
        load_default=None,
        validate=validate.Length(max=50, error="payment_method must be at most 50 characters."),
    )

    notes = fields.Str(
        load_default=None,
        validate=validate.Length(max=1000, error="notes must be at most 1000 characters."),
    )

    settled_at = fields.AwareDateTime(load_default=None)

    @validates("transaction_ids")
    def validate_transaction_ids(self, value, **kwargs) -> None:
        if value is None or value == SETTLE_ALL:
            return
        if not isinstance(value, list) or not value:
            raise ValidationError("transaction_ids must be \"all\" or a non-empty list of ids.")
        if not all(isinstance(tid, str) and tid for tid in value):
            raise ValidationError("Every transaction id must be a non-empty string.")

    @post_load
    def normalise_selection(self, data: dict, **kwargs) -> dict:
        if data.get("transaction_ids") == SETTLE_ALL:
            data["transaction_ids"] = None
        return data
