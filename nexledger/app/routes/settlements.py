"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, return envelope.
  - No business logic. No DB queries.
  - execute does NOT commit here: the executor commits inside the group lock
    (SqlAlchemyDebtStore.lock_group) so the lock and the writes end together.

Partial failure:
  Execution returns 200 even when some transactions failed. Each failure is
  listed in data.failures and echoed as a warning, so a client can re-fetch
  the plan and retry.

Endpoints (url_prefix=/api/v1):
  GET  /groups/:id/settlements?mode=     → 200  current plan
  POST /groups/:id/settlements/execute   → 200  execution report
  GET  /groups/:id/settlements/summary   → 200  settlement statistics
  GET  /users/:id/settlements/summary    → 200  settlement statistics
  GET  /groups/:id/settlements/history   → 200  settled debts, newest first
  GET  /users/:id/settlements/history    → 200  settled debts, newest first
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from nexledger.app.extensions import db
from nexledger.app.middleware.identity import require_caller
from nexledger.app.records import SettlementMode
from nexledger.app.schemas.settlement_schema import ExecuteSettlementSchema, SettlementQuerySchema
from nexledger.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


def _default_mode() -> SettlementMode:
    return SettlementMode(current_app.config["LEDGER_DEFAULT_SETTLEMENT_MODE"])


@settlements_bp.route("/groups/<int:group_id>/settlements", methods=["GET"])
@require_caller
def list_available_settlements(group_id: int):
    """GET /groups/:id/settlements — plan against current outstanding debts."""
    query = SettlementQuerySchema().load(request.args)
    result = settlement_service.get_available_settlements(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        mode=query["mode"],
        default_mode=_default_mode(),
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/groups/<int:group_id>/settlements/execute", methods=["POST"])
@require_caller
def execute_settlements(group_id: int):
    """
    POST /groups/:id/settlements/execute

    Body: {"mode"?, "transaction_ids"?: "all" | [ids], "payment_method"?, "notes"?,
           "settled_at"?: ISO 8601 with offset}
    """
    data = ExecuteSettlementSchema().load(request.get_json(silent=True) or {})
    result = settlement_service.execute_settlements(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        notifier=current_app.extensions.get("nexledger.notifier"),
        default_mode=_default_mode(),
    )
    warnings = [
        {"code": f["code"], "message": f["message"]}
        for f in result["failures"]
    ]
    return jsonify({"data": result, "warnings": warnings}), 200


@settlements_bp.route("/groups/<int:group_id>/settlements/summary", methods=["GET"])
@require_caller
def get_group_summary(group_id: int):
    result = settlement_service.get_settlement_summary(
        caller_id=g.user_id,
        session=db.session,
        group_id=group_id,
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/users/<int:user_id>/settlements/summary", methods=["GET"])
@require_caller
def get_user_summary(user_id: int):
    result = settlement_service.get_settlement_summary(
        caller_id=g.user_id,
        session=db.session,
        user_id=user_id,
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/groups/<int:group_id>/settlements/history", methods=["GET"])
@require_caller
def get_group_history(group_id: int):
    """GET /groups/:id/settlements/history — settled debts, newest first."""
    result = settlement_service.get_settlement_history(
        caller_id=g.user_id,
        session=db.session,
        group_id=group_id,
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/users/<int:user_id>/settlements/history", methods=["GET"])
@require_caller
def get_user_history(user_id: int):
    result = settlement_service.get_settlement_history(
        caller_id=g.user_id,
        session=db.session,
        user_id=user_id,
    )
    return jsonify({"data": result, "warnings": []}), 200
