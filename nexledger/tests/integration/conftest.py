"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against the database named by TEST_DATABASE_URL, an in-memory
    SQLite database unless set (Flask-SQLAlchemy shares one connection for
    in-memory SQLite, so every request sees the same data).
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Groups and memberships are owned by the group-management service, which has
no endpoints here, so they are seeded straight into the database.

Helper functions (not fixtures) are provided for common operations:
  - caller(user_id)            → {"X-User-Id": "<user_id>"}
  - make_group(app, ...)       → group id
  - make_expense(client, ...)  → HTTP response
  - get_balances(client, ...)  → balances payload dict
  - get_plan(client, ...)      → settlement plan payload dict
  - execute(client, ...)       → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from nexledger.app import create_app
from nexledger.app.extensions import db as _db
from nexledger.app.models.group import Group
from nexledger.app.models.membership import Membership
from nexledger.app.records import GroupKind, MemberRole, SettlementMode


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.
    Tables are created up front and dropped at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows after every test in FK-safe order:
      debts reference expenses, groups and other debts;
      splits reference expenses; expenses and memberships reference groups.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM debts"))
            conn.execute(text("DELETE FROM splits"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def caller(user_id: int) -> dict:
    """Returns the caller identity header the gateway would forward."""
    return {"X-User-Id": str(user_id)}


def make_group(
    app,
    members: list[int],
    admins: tuple[int, ...] = (),
    kind: GroupKind = GroupKind.GROUP,
    currency: str = "USD",
    settlement_mode: SettlementMode | None = None,
    name: str = "Test Group",
) -> int:
    """Seeds a group with the given members and returns its id."""
    with app.app_context():
        group = Group(name=name, kind=kind, currency=currency, settlement_mode=settlement_mode)
        _db.session.add(group)
        _db.session.flush()
        group_id = group.id

        for user_id in members:
            _db.session.add(Membership(
                user_id=user_id,
                group_id=group_id,
                role=MemberRole.ADMIN if user_id in admins else MemberRole.MEMBER,
            ))
        _db.session.commit()
        return group_id


def make_expense(
    client,
    caller_id: int,
    group_id: int,
    paid_by_user_id: int,
    amount: str,
    participants: list[dict] | None = None,
    split_policy: str | None = None,
    description: str = "Test Expense",
    **extra,
):
    """
    Creates an expense and returns the HTTP response.
    Without participants and split_policy the amount is split equally
    between every member of the group.
    """
    payload: dict = {
        "paid_by_user_id": paid_by_user_id,
        "description": description,
        "amount": amount,
        **extra,
    }
    if participants is not None:
        payload["participants"] = participants
    if split_policy is not None:
        payload["split_policy"] = split_policy

    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=caller(caller_id),
    )


def balance_map(client, caller_id: int, group_id: int) -> dict[int, str]:
    """GET /groups/:id/balances reduced to {user_id: balance}."""
    return {
        b["user_id"]: b["balance"]
        for b in get_balances(client, caller_id, group_id)["balances"]
    }


def get_balances(client, caller_id: int, group_id: int) -> dict:
    resp = client.get(f"/api/v1/groups/{group_id}/balances", headers=caller(caller_id))
    assert resp.status_code == 200, f"get_balances failed: {resp.get_json()}"
    return resp.get_json()["data"]


def get_plan(client, caller_id: int, group_id: int, mode: str | None = None) -> dict:
    url = f"/api/v1/groups/{group_id}/settlements"
    if mode is not None:
        url += f"?mode={mode}"
    resp = client.get(url, headers=caller(caller_id))
    assert resp.status_code == 200, f"get_plan failed: {resp.get_json()}"
    return resp.get_json()["data"]


def execute(client, caller_id: int, group_id: int, body: dict | None = None):
    """POSTs to the execute endpoint and returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/settlements/execute",
        json=body or {},
        headers=caller(caller_id),
    )
