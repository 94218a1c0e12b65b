"""
routes/balances.py — Balance route handlers.

Registered at url_prefix=/api/v1 because it serves both a group-scoped and a
user-scoped path.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries.

Endpoints:
  GET /groups/:id/balances  → 200  every member's balance + simplified plan
  GET /users/:id/balances   → 200  one user's balances across groups
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from nexledger.app.extensions import db
from nexledger.app.middleware.identity import require_caller
from nexledger.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/groups/<int:group_id>/balances", methods=["GET"])
@require_caller
def get_group_balances(group_id: int):
    """
    GET /groups/:id/balances

    The service asserts the conservation law (balance_sum == 0) and raises
    INCONSISTENT_STATE (500) if the stored debts violate it.
    """
    result = balance_service.get_group_balances(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/users/<int:user_id>/balances", methods=["GET"])
@require_caller
def get_user_balances(user_id: int):
    """GET /users/:id/balances — callers may only read their own."""
    result = balance_service.get_user_balances(
        user_id=user_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
