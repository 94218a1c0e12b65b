"""
tests/unit/test_validation_schemas.py — Unit tests for all marshmallow schemas.

What this file proves:
  - Every schema accepts valid input without raising
  - Every schema rejects invalid input with the correct ValidationError
  - Field-level rules (type, length, enum, decimal precision) are enforced by schemas
  - Rules that need the database (membership, currency) are NOT tested here

No database, no Flask application context. Schemas inherit from
marshmallow.Schema directly (not ma.Schema), which is why they can be
instantiated here (see extensions.py).
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from marshmallow import ValidationError

from nexledger.app.errors import ErrorCode
from nexledger.app.records import SettlementMode, SplitPolicy
from nexledger.app.schemas.expense_schema import (
    CreateExpenseSchema,
    ParticipantSchema,
    PatchExpenseSchema,
)
from nexledger.app.schemas.settlement_schema import ExecuteSettlementSchema, SettlementQuerySchema


def _expense(**overrides) -> dict:
    payload = {
        "paid_by_user_id": 1,
        "description": "Dinner",
        "amount": "60.00",
    }
    payload.update(overrides)
    return payload


# ═══════════════════════════════════════════════════════════════════════════
# CreateExpenseSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateExpenseSchema:

    def _load(self, data: dict):
        return CreateExpenseSchema().load(data)

    def test_minimal_payload_defaults(self):
        result = self._load(_expense())

        assert result["amount"] == Decimal("60.00")
        assert isinstance(result["amount"], Decimal)
        assert result["split_policy"] == SplitPolicy.EQUALLY
        assert result["payer_participates"] is True
        assert result["participants"] is None
        assert result["currency"] is None

    def test_full_percentage_payload(self):
        result = self._load(_expense(
            split_policy="percentage",
            currency="EUR",
            participants=[
                {"user_id": 1, "percentage": "60"},
                {"user_id": 2, "percentage": "40"},
            ],
        ))

        assert result["split_policy"] == SplitPolicy.PERCENTAGE
        assert result["currency"] == "EUR"
        assert [p["percentage"] for p in result["participants"]] == [Decimal("60"), Decimal("40")]

    def test_amount_payload_with_zero_share(self):
        result = self._load(_expense(
            split_policy="amount",
            participants=[
                {"user_id": 1, "amount": "60.00"},
                {"user_id": 2, "amount": "0"},
            ],
        ))
        assert result["participants"][1]["amount"] == Decimal("0")

    @pytest.mark.parametrize("field", ["paid_by_user_id", "description", "amount"])
    def test_required_fields(self, field):
        payload = _expense()
        del payload[field]
        with pytest.raises(ValidationError) as exc:
            self._load(payload)
        assert field in exc.value.messages

    def test_amount_precision_rejected_not_rounded(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(amount="10.005"))
        assert exc.value.messages["amount"] == [ErrorCode.INVALID_AMOUNT_PRECISION]

    def test_trailing_zeros_past_the_cent_accepted(self):
        assert self._load(_expense(amount="10.100"))["amount"] == Decimal("10.10")

    @pytest.mark.parametrize("amount", ["NaN", "Infinity"])
    def test_special_values_rejected(self, amount):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(amount=amount))
        assert "amount" in exc.value.messages

    @pytest.mark.parametrize("amount", ["0", "0.00", "-1.00"])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(amount=amount))
        assert "amount" in exc.value.messages

    def test_blank_description_rejected(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(description="   "))
        assert "description" in exc.value.messages

    def test_description_too_long_rejected(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(description="x" * 256))
        assert "description" in exc.value.messages

    def test_unknown_split_policy(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(split_policy="shares"))
        assert exc.value.messages["split_policy"] == [ErrorCode.INVALID_SPLIT_POLICY]

    @pytest.mark.parametrize("currency", ["usd", "US", "EURO", "12A"])
    def test_invalid_currency(self, currency):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(currency=currency))
        assert "currency" in exc.value.messages

    def test_float_user_id_rejected(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(paid_by_user_id=1.0))
        assert "paid_by_user_id" in exc.value.messages

    def test_duplicate_participant(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(participants=[{"user_id": 1}, {"user_id": 1}]))
        assert exc.value.messages["participants"] == [ErrorCode.DUPLICATE_PARTICIPANT]

    def test_empty_participant_list_rejected(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(participants=[]))
        assert "participants" in exc.value.messages

    @pytest.mark.parametrize("policy", ["percentage", "amount"])
    def test_participants_required_for_explicit_policies(self, policy):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(split_policy=policy))
        assert "participants" in exc.value.messages

    def test_percentage_policy_needs_every_percentage(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(
                split_policy="percentage",
                participants=[{"user_id": 1, "percentage": "100"}, {"user_id": 2}],
            ))
        assert "user 2" in exc.value.messages["participants"][0]

    def test_amount_policy_needs_every_amount(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(
                split_policy="amount",
                participants=[{"user_id": 1}, {"user_id": 2, "amount": "60.00"}],
            ))
        assert "user 1" in exc.value.messages["participants"][0]

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError) as exc:
            self._load(_expense(category="food"))
        assert "category" in exc.value.messages


# ═══════════════════════════════════════════════════════════════════════════
# ParticipantSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestParticipantSchema:

    def test_percentage_bounds(self):
        with pytest.raises(ValidationError):
            ParticipantSchema().load({"user_id": 1, "percentage": "100.01"})
        with pytest.raises(ValidationError):
            ParticipantSchema().load({"user_id": 1, "percentage": "-1"})

    def test_percentage_precision(self):
        assert ParticipantSchema().load({"user_id": 1, "percentage": "33.3333"})["percentage"] == Decimal("33.3333")
        with pytest.raises(ValidationError):
            ParticipantSchema().load({"user_id": 1, "percentage": "33.33333"})

    def test_share_precision(self):
        with pytest.raises(ValidationError) as exc:
            ParticipantSchema().load({"user_id": 1, "amount": "1.001"})
        assert exc.value.messages["amount"] == [ErrorCode.INVALID_AMOUNT_PRECISION]

    def test_user_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            ParticipantSchema().load({"user_id": 0})


# ═══════════════════════════════════════════════════════════════════════════
# PatchExpenseSchema
# ═══════════════════════════════════════════════════════════════════════════

class TestPatchExpenseSchema:

    def _load(self, data: dict):
        return PatchExpenseSchema().load(data)

    def test_empty_patch_is_valid(self):
        assert self._load({}) == {}

    def test_omitted_fields_stay_absent(self):
        result = self._load({"description": "Lunch"})
        assert result == {"description": "Lunch"}

    def test_amount_precision(self):
        with pytest.raises(ValidationError) as exc:
            self._load({"amount": "1.234"})
        assert exc.value.messages["amount"] == [ErrorCode.INVALID_AMOUNT_PRECISION]

    def test_policy_change_requires_participants(self):
        with pytest.raises(ValidationError) as exc:
            self._load({"split_policy": "amount"})
        assert "participants" in exc.value.messages

    def test_policy_change_to_equally_without_participants(self):
        result = self._load({"split_policy": "equally"})
        assert result["split_policy"] == SplitPolicy.EQUALLY

    def test_participants_without_policy_checks_duplicates(self):
        with pytest.raises(ValidationError) as exc:
            self._load({"participants": [{"user_id": 3}, {"user_id": 3}]})
        assert exc.value.messages["participants"] == [ErrorCode.DUPLICATE_PARTICIPANT]


# ═══════════════════════════════════════════════════════════════════════════
# Settlement schemas
# ═══════════════════════════════════════════════════════════════════════════

class TestSettlementQuerySchema:

    def test_mode_defaults_to_none(self):
        assert SettlementQuerySchema().load({}) == {"mode": None}

    def test_mode_parsed(self):
        assert SettlementQuerySchema().load({"mode": "detailed"})["mode"] == SettlementMode.DETAILED

    def test_unknown_mode(self):
        with pytest.raises(ValidationError) as exc:
            SettlementQuerySchema().load({"mode": "fastest"})
        assert exc.value.messages["mode"] == [ErrorCode.INVALID_SETTLEMENT_MODE]


class TestExecuteSettlementSchema:

    def _load(self, data: dict):
        return ExecuteSettlementSchema().load(data)

    def test_empty_body_means_settle_all(self):
        result = self._load({})
        assert result["transaction_ids"] is None
        assert result["mode"] is None
        assert result["payment_method"] is None

    def test_all_keyword_means_settle_all(self):
        assert self._load({"transaction_ids": "all"})["transaction_ids"] is None

    def test_explicit_ids_kept_in_order(self):
        result = self._load({"transaction_ids": ["b", "a"], "mode": "simplified"})
        assert result["transaction_ids"] == ["b", "a"]
        assert result["mode"] == SettlementMode.SIMPLIFIED

    @pytest.mark.parametrize("value", [[], "some", ["a", 3], [""], 12])
    def test_invalid_transaction_ids(self, value):
        with pytest.raises(ValidationError) as exc:
            self._load({"transaction_ids": value})
        assert "transaction_ids" in exc.value.messages

    def test_payment_method_length(self):
        with pytest.raises(ValidationError) as exc:
            self._load({"payment_method": "x" * 51})
        assert "payment_method" in exc.value.messages

    def test_unknown_mode(self):
        with pytest.raises(ValidationError) as exc:
            self._load({"mode": "greedy"})
        assert exc.value.messages["mode"] == [ErrorCode.INVALID_SETTLEMENT_MODE]

    def test_settled_at_defaults_to_none(self):
        assert self._load({})["settled_at"] is None

    def test_settled_at_keeps_offset(self):
        result = self._load({"settled_at": "2026-03-01T12:00:00+02:00"})
        assert result["settled_at"] == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["2026-03-01T12:00:00", "yesterday", 17])
    def test_settled_at_must_be_aware(self, value):
        with pytest.raises(ValidationError) as exc:
            self._load({"settled_at": value})
        assert "settled_at" in exc.value.messages
