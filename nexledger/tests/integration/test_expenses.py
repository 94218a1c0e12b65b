"""
tests/integration/test_expenses.py — Integration tests for expense endpoints.

Endpoints covered:
  POST   /groups/:id/expenses → 201
  GET    /expenses/:id        → 200
  PATCH  /expenses/:id        → 200
  DELETE /expenses/:id        → 200

Each write is checked through GET /groups/:id/balances as well, since the
debts an expense generates are what the rest of the ledger reads.
"""

from __future__ import annotations

from decimal import Decimal

from nexledger.app.records import GroupKind

from .conftest import balance_map, caller, execute, make_expense, make_group


def _error(resp) -> dict:
    return resp.get_json()["error"]


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/expenses — happy path
# ═══════════════════════════════════════════════════════════════════════════

def test_equal_split_between_all_members(app, client):
    group_id = make_group(app, members=[1, 2, 3])

    resp = make_expense(client, 1, group_id, paid_by_user_id=1, amount="100.00")

    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["amount"] == "100.00"
    assert data["currency"] == "USD"
    assert data["split_policy"] == "equally"
    assert data["deleted_at"] is None
    assert [(s["user_id"], s["amount"]) for s in data["splits"]] == [
        (1, "33.34"), (2, "33.33"), (3, "33.33"),
    ]
    assert resp.get_json()["warnings"] == []

    assert balance_map(client, 1, group_id) == {1: "66.66", 2: "-33.33", 3: "-33.33"}


def test_equal_split_between_listed_participants_in_order(app, client):
    group_id = make_group(app, members=[1, 2, 3])

    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="0.05",
        participants=[{"user_id": 3}, {"user_id": 2}],
    )

    assert resp.status_code == 201
    splits = resp.get_json()["data"]["splits"]
    assert [(s["user_id"], s["amount"]) for s in splits] == [(3, "0.03"), (2, "0.02")]
    assert balance_map(client, 1, group_id) == {1: "0.05", 2: "-0.02", 3: "-0.03"}


def test_percentage_split(app, client):
    group_id = make_group(app, members=[1, 2])

    resp = make_expense(
        client, 2, group_id, paid_by_user_id=2, amount="80.00",
        split_policy="percentage",
        participants=[
            {"user_id": 1, "percentage": "25"},
            {"user_id": 2, "percentage": "75"},
        ],
    )

    assert resp.status_code == 201
    splits = resp.get_json()["data"]["splits"]
    assert [(s["user_id"], s["amount"]) for s in splits] == [(1, "20.00"), (2, "60.00")]
    assert Decimal(splits[0]["percentage"]) == Decimal("25")
    assert balance_map(client, 1, group_id) == {1: "-20.00", 2: "20.00"}


def test_amount_split_with_payer_excluded(app, client):
    group_id = make_group(app, members=[1, 2, 3])

    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="50.00",
        split_policy="amount",
        payer_participates=False,
        participants=[
            {"user_id": 2, "amount": "35.00"},
            {"user_id": 3, "amount": "15.00"},
        ],
    )

    assert resp.status_code == 201
    assert balance_map(client, 1, group_id) == {1: "50.00", 2: "-35.00", 3: "-15.00"}


def test_payer_excluded_from_equal_split(app, client):
    group_id = make_group(app, members=[1, 2, 3])

    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="30.00", payer_participates=False,
    )

    assert resp.status_code == 201
    splits = resp.get_json()["data"]["splits"]
    assert [(s["user_id"], s["amount"]) for s in splits] == [(2, "15.00"), (3, "15.00")]


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/expenses — failure paths
# ═══════════════════════════════════════════════════════════════════════════

def test_missing_caller_header(app, client):
    group_id = make_group(app, members=[1])
    resp = client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json={"paid_by_user_id": 1, "description": "x", "amount": "1.00"},
    )
    assert resp.status_code == 401
    assert _error(resp)["code"] == "CALLER_MISSING"


def test_invalid_caller_header(app, client):
    group_id = make_group(app, members=[1])
    resp = client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json={"paid_by_user_id": 1, "description": "x", "amount": "1.00"},
        headers={"X-User-Id": "alice"},
    )
    assert resp.status_code == 401
    assert _error(resp)["code"] == "CALLER_INVALID"


def test_unknown_group(client):
    resp = make_expense(client, 1, 9999, paid_by_user_id=1, amount="10.00")
    assert resp.status_code == 404
    assert _error(resp)["code"] == "GROUP_NOT_FOUND"


def test_non_member_caller_forbidden(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(client, 3, group_id, paid_by_user_id=1, amount="10.00")
    assert resp.status_code == 403
    assert _error(resp)["code"] == "FORBIDDEN"


def test_payer_not_member(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(client, 1, group_id, paid_by_user_id=7, amount="10.00")
    assert resp.status_code == 422
    assert _error(resp)["code"] == "PAYER_NOT_MEMBER"
    assert _error(resp)["field"] == "paid_by_user_id"


def test_participant_not_member(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="10.00",
        participants=[{"user_id": 1}, {"user_id": 8}],
    )
    assert resp.status_code == 422
    assert _error(resp)["code"] == "PARTICIPANT_NOT_MEMBER"


def test_currency_mismatch(app, client):
    group_id = make_group(app, members=[1, 2], currency="EUR")
    resp = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00", currency="USD")
    assert resp.status_code == 422
    assert _error(resp)["code"] == "CURRENCY_MISMATCH"


def test_group_currency_used_by_default(app, client):
    group_id = make_group(app, members=[1, 2], currency="EUR")
    resp = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00")
    assert resp.status_code == 201
    assert resp.get_json()["data"]["currency"] == "EUR"


def test_percentages_not_summing_to_hundred(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="10.00",
        split_policy="percentage",
        participants=[{"user_id": 1, "percentage": "50"}, {"user_id": 2, "percentage": "40"}],
    )
    assert resp.status_code == 422
    assert _error(resp)["code"] == "INVALID_SPLIT"


def test_amounts_not_summing_to_total(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="10.00",
        split_policy="amount",
        participants=[{"user_id": 1, "amount": "5.00"}, {"user_id": 2, "amount": "4.00"}],
    )
    assert resp.status_code == 422
    assert _error(resp)["code"] == "INVALID_SPLIT"


def test_amount_precision(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.001")
    assert resp.status_code == 400
    assert _error(resp)["code"] == "INVALID_AMOUNT_PRECISION"
    assert _error(resp)["field"] == "amount"


def test_missing_required_field(app, client):
    group_id = make_group(app, members=[1])
    resp = client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json={"paid_by_user_id": 1, "amount": "1.00"},
        headers=caller(1),
    )
    assert resp.status_code == 400
    assert _error(resp)["code"] == "MISSING_FIELD"
    assert _error(resp)["field"] == "description"


def test_duplicate_participant(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="10.00",
        participants=[{"user_id": 2}, {"user_id": 2}],
    )
    assert resp.status_code == 400
    assert _error(resp)["code"] == "DUPLICATE_PARTICIPANT"


def test_invalid_split_policy(app, client):
    group_id = make_group(app, members=[1, 2])
    resp = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00", split_policy="shares")
    assert resp.status_code == 400
    assert _error(resp)["code"] == "INVALID_SPLIT_POLICY"


def test_failed_create_writes_nothing(app, client):
    group_id = make_group(app, members=[1, 2])
    make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="10.00",
        split_policy="amount",
        participants=[{"user_id": 1, "amount": "1.00"}, {"user_id": 2, "amount": "1.00"}],
    )
    assert balance_map(client, 1, group_id) == {1: "0.00", 2: "0.00"}


# ═══════════════════════════════════════════════════════════════════════════
# GET /expenses/:id
# ═══════════════════════════════════════════════════════════════════════════

def test_get_expense(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = client.get(f"/api/v1/expenses/{expense_id}", headers=caller(2))

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["id"] == expense_id
    assert [(s["user_id"], s["amount"]) for s in data["splits"]] == [(1, "5.00"), (2, "5.00")]


def test_get_unknown_expense(client):
    resp = client.get("/api/v1/expenses/424242", headers=caller(1))
    assert resp.status_code == 404
    assert _error(resp)["code"] == "EXPENSE_NOT_FOUND"


def test_get_expense_non_member_forbidden(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = client.get(f"/api/v1/expenses/{expense_id}", headers=caller(3))

    assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# PATCH /expenses/:id
# ═══════════════════════════════════════════════════════════════════════════

def _patch(client, caller_id: int, expense_id: int, body: dict):
    return client.patch(f"/api/v1/expenses/{expense_id}", json=body, headers=caller(caller_id))


def test_edit_amount_recalculates_debts(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = _patch(client, 1, expense_id, {"amount": "30.00"})

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["amount"] == "30.00"
    assert data["updated_at"] is not None
    assert [(s["user_id"], s["amount"]) for s in data["splits"]] == [(1, "15.00"), (2, "15.00")]
    assert balance_map(client, 1, group_id) == {1: "15.00", 2: "-15.00"}


def test_edit_description_keeps_debts(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = _patch(client, 1, expense_id, {"description": "Groceries"})

    assert resp.status_code == 200
    assert resp.get_json()["data"]["description"] == "Groceries"
    assert balance_map(client, 1, group_id) == {1: "5.00", 2: "-5.00"}


def test_edit_payer_moves_debts(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = _patch(client, 1, expense_id, {"paid_by_user_id": 2})

    assert resp.status_code == 200
    assert balance_map(client, 1, group_id) == {1: "-5.00", 2: "5.00"}


def test_edit_payer_rejoins_equal_split(app, client):
    group_id = make_group(app, members=[1, 2, 3])
    expense_id = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="30.00", payer_participates=False,
    ).get_json()["data"]["id"]

    resp = _patch(client, 1, expense_id, {"payer_participates": True})

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["payer_participates"] is True
    assert [(s["user_id"], s["amount"]) for s in data["splits"]] == [
        (1, "10.00"), (2, "10.00"), (3, "10.00"),
    ]
    assert balance_map(client, 1, group_id) == {1: "20.00", 2: "-10.00", 3: "-10.00"}


def test_edit_payer_rejoins_amount_split_needs_participants(app, client):
    group_id = make_group(app, members=[1, 2, 3])
    expense_id = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="50.00",
        split_policy="amount",
        payer_participates=False,
        participants=[
            {"user_id": 2, "amount": "35.00"},
            {"user_id": 3, "amount": "15.00"},
        ],
    ).get_json()["data"]["id"]

    resp = _patch(client, 1, expense_id, {"payer_participates": True})

    assert resp.status_code == 422
    assert _error(resp)["code"] == "INVALID_SPLIT"
    assert balance_map(client, 1, group_id) == {1: "50.00", 2: "-35.00", 3: "-15.00"}


def test_edit_switch_to_amount_policy(app, client):
    group_id = make_group(app, members=[1, 2, 3])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="30.00").get_json()["data"]["id"]

    resp = _patch(client, 1, expense_id, {
        "split_policy": "amount",
        "participants": [{"user_id": 2, "amount": "30.00"}],
    })

    assert resp.status_code == 200
    assert balance_map(client, 1, group_id) == {1: "30.00", 2: "-30.00", 3: "0.00"}


def test_edit_by_non_payer_member_forbidden(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = _patch(client, 2, expense_id, {"amount": "20.00"})

    assert resp.status_code == 403
    assert _error(resp)["code"] == "FORBIDDEN"


def test_edit_by_admin_allowed(app, client):
    group_id = make_group(app, members=[1, 2], admins=(2,))
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = _patch(client, 2, expense_id, {"amount": "20.00"})

    assert resp.status_code == 200


def test_edit_invalid_split_rolls_back(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(
        client, 1, group_id, paid_by_user_id=1, amount="10.00",
        split_policy="amount",
        participants=[{"user_id": 1, "amount": "4.00"}, {"user_id": 2, "amount": "6.00"}],
    ).get_json()["data"]["id"]

    # Stored amounts no longer add up to the new total.
    resp = _patch(client, 1, expense_id, {"amount": "12.00"})

    assert resp.status_code == 422
    assert _error(resp)["code"] == "INVALID_SPLIT"
    assert balance_map(client, 1, group_id) == {1: "6.00", 2: "-6.00"}


def test_edit_after_settlement_creates_refund(app, client):
    """2 settles 5.00, then the expense shrinks to 6.00 → 1 owes 2 back 2.00."""
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]
    assert execute(client, 1, group_id).status_code == 200

    resp = _patch(client, 1, expense_id, {"amount": "6.00"})

    assert resp.status_code == 200
    assert balance_map(client, 1, group_id) == {1: "-2.00", 2: "2.00"}


# ═══════════════════════════════════════════════════════════════════════════
# DELETE /expenses/:id
# ═══════════════════════════════════════════════════════════════════════════

def test_delete_voids_debts(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=caller(1))

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"deleted": True, "expense_id": expense_id}
    assert balance_map(client, 1, group_id) == {1: "0.00", 2: "0.00"}

    detail = client.get(f"/api/v1/expenses/{expense_id}", headers=caller(1)).get_json()["data"]
    assert detail["deleted_at"] is not None


def test_delete_twice_is_idempotent(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    client.delete(f"/api/v1/expenses/{expense_id}", headers=caller(1))
    resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=caller(1))

    assert resp.status_code == 200


def test_deleted_expense_cannot_be_edited(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]
    client.delete(f"/api/v1/expenses/{expense_id}", headers=caller(1))

    resp = _patch(client, 1, expense_id, {"amount": "20.00"})

    assert resp.status_code == 422
    assert _error(resp)["code"] == "EXPENSE_DELETED"


def test_delete_by_non_payer_member_forbidden(app, client):
    group_id = make_group(app, members=[1, 2])
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]

    resp = client.delete(f"/api/v1/expenses/{expense_id}", headers=caller(2))

    assert resp.status_code == 403


def test_delete_after_settlement_refunds(app, client):
    group_id = make_group(app, members=[1, 2], kind=GroupKind.GROUP)
    expense_id = make_expense(client, 1, group_id, paid_by_user_id=1, amount="10.00").get_json()["data"]["id"]
    execute(client, 2, group_id)

    client.delete(f"/api/v1/expenses/{expense_id}", headers=caller(1))

    assert balance_map(client, 1, group_id) == {1: "-5.00", 2: "5.00"}
