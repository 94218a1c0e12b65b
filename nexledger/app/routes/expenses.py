"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the group-scoped path (/groups/:id/expenses) and the expense-ID
paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.
  - _serialize_expense() is a pure data-shape helper — not business logic.

Endpoints:
  POST   /groups/:id/expenses   → 201  create expense (+ debts)
  GET    /expenses/:id          → 200  get expense + splits
  PATCH  /expenses/:id          → 200  partial update, debts recalculated
  DELETE /expenses/:id          → 200  soft-delete, debts voided
"""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, current_app, g, jsonify, request

from nexledger.app.extensions import db
from nexledger.app.middleware.identity import require_caller
from nexledger.app.models.expense import Expense
from nexledger.app.records import SplitSettings
from nexledger.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from nexledger.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


def _split_settings() -> SplitSettings:
    return SplitSettings(
        currency=current_app.config["LEDGER_DEFAULT_CURRENCY"],
        percentage_tolerance=Decimal(str(current_app.config["LEDGER_PERCENTAGE_TOLERANCE"])),
    )


# ── Serialization helper ───────────────────────────────────────────────────
# Pure data-shaping — no DB access, no logic. Amounts as strings.

def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "paid_by_user_id": expense.paid_by_user_id,
        "description": expense.description,
        "amount": str(expense.amount),
        "currency": expense.currency,
        "split_policy": expense.split_policy.value,
        "payer_participates": expense.payer_participates,
        "created_at": expense.created_at.isoformat(),
        "updated_at": expense.updated_at.isoformat() if expense.updated_at else None,
        "deleted_at": expense.deleted_at.isoformat() if expense.deleted_at else None,
        "splits": [
            {
                "user_id": s.user_id,
                "amount": str(s.amount),
                "percentage": str(s.percentage) if s.percentage is not None else None,
            }
            for s in expense.splits
        ],
    }


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_caller
def create_expense(group_id: int):
    """POST /groups/:id/expenses — Record a new expense and generate its debts."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        settings=_split_settings(),
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 201


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_caller
def get_expense(expense_id: int):
    """GET /expenses/:id — Get expense detail including splits."""
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@require_caller
def edit_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update.
    Only the original payer or a group admin may edit.
    """
    data = PatchExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.edit_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        settings=_split_settings(),
    )
    db.session.commit()
    return jsonify({"data": _serialize_expense(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_caller
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Soft-delete. Outstanding debts are voided, never removed."""
    expense_service.delete_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": [],
    }), 200
