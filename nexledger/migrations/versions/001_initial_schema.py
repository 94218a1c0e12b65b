"""Initial schema — ledger tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-18

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. Tables in FK dependency order (groups → memberships → expenses
     → splits → debts)
  2. Indexes (including the partial indexes idx_expenses_active and
     idx_debts_outstanding)

Enum columns (group kind, member role, settlement mode, split policy) are
VARCHAR(16) with the enum values as strings, matching the models'
Enum(..., native_enum=False). No PostgreSQL types need creating.

There is no users table: user ids are opaque values issued by the identity
provider, so user columns carry no foreign key.

ON DELETE policies:
  memberships.group_id      → RESTRICT  (cannot delete a group with members)
  expenses.group_id         → RESTRICT  (cannot delete a group with expenses)
  splits.expense_id         → CASCADE   (splits owned by expense)
  debts.*                   → RESTRICT  (debt history is never removed)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── Step 1: groups ─────────────────────────────────────────────────────
    # settlement_mode NULL = application default (LEDGER_DEFAULT_SETTLEMENT_MODE).

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "kind",
            sa.String(16),
            nullable=False,
            server_default="group",
        ),
        sa.Column(
            "currency",
            sa.String(3),
            nullable=False,
            server_default="USD",
        ),
        sa.Column("settlement_mode", sa.String(16), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
        sa.CheckConstraint(
            "LENGTH(currency) = 3",
            name="ck_groups_currency_iso",
        ),
        sa.CheckConstraint(
            "kind IN ('group', 'personal')",
            name="ck_groups_kind_valid",
        ),
        sa.CheckConstraint(
            "settlement_mode IS NULL OR settlement_mode IN ('simplified', 'detailed')",
            name="ck_groups_settlement_mode_valid",
        ),
    )

    # ── Step 2: memberships ────────────────────────────────────────────────
    # UNIQUE(user_id, group_id).

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column(
            "role",
            sa.String(16),
            nullable=False,
            server_default="member",
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_memberships_user_group"),
        sa.CheckConstraint(
            "role IN ('admin', 'member')",
            name="ck_memberships_role_valid",
        ),
    )

    # ── Step 3: expenses ───────────────────────────────────────────────────
    # deleted_at IS NULL = active; non-null = soft-deleted.

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column("paid_by_user_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column(
            "split_policy",
            sa.String(16),
            nullable=False,
            server_default="equally",
        ),
        sa.Column(
            "payer_participates",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("TRUE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
        sa.CheckConstraint(
            "split_policy IN ('equally', 'percentage', 'amount')",
            name="ck_expenses_split_policy_valid",
        ),
    )

    # ── Step 4: splits ─────────────────────────────────────────────────────
    # A zero share is legal (AMOUNT policy) and generates no debt.

    op.create_table(
        "splits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_splits_expense"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "position",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(7, 4), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_splits"),
        sa.UniqueConstraint("expense_id", "user_id", name="uq_splits_expense_user"),
        sa.CheckConstraint("amount >= 0", name="ck_splits_amount_non_negative"),
    )

    # ── Step 5: debts ──────────────────────────────────────────────────────
    # expense_id NULL = ad-hoc row written by settlement rerouting.
    # parent_debt_id points a settled partial portion at its live row.

    op.create_table(
        "debts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_debts_group"),
            nullable=False,
        ),
        sa.Column("debtor_id", sa.Integer(), nullable=False),
        sa.Column("creditor_id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="RESTRICT", name="fk_debts_expense"),
            nullable=True,
        ),
        sa.Column(
            "parent_debt_id",
            sa.Integer(),
            sa.ForeignKey("debts.id", ondelete="RESTRICT", name="fk_debts_parent"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_debts"),
        sa.CheckConstraint("amount > 0", name="ck_debts_amount_positive"),
        sa.CheckConstraint(
            "debtor_id <> creditor_id",
            name="ck_debts_no_self_debt",
        ),
    )

    # ── Step 6: Indexes ────────────────────────────────────────────────────

    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])

    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    # Balance and edit paths only read active expenses.
    op.create_index(
        "idx_expenses_active",
        "expenses",
        ["group_id"],
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_index("ix_splits_expense_id", "splits", ["expense_id"])

    op.create_index("ix_debts_group_id", "debts", ["group_id"])
    op.create_index("ix_debts_debtor_id", "debts", ["debtor_id"])
    op.create_index("ix_debts_creditor_id", "debts", ["creditor_id"])
    op.create_index("ix_debts_expense_id", "debts", ["expense_id"])
    # The planner reads outstanding debts per group on every request.
    op.create_index(
        "idx_debts_outstanding",
        "debts",
        ["group_id"],
        postgresql_where=sa.text("settled_at IS NULL AND voided_at IS NULL"),
    )


def downgrade() -> None:
    """Drop all objects created in upgrade(), in reverse dependency order."""

    op.drop_index("idx_debts_outstanding",   table_name="debts")
    op.drop_index("ix_debts_expense_id",     table_name="debts")
    op.drop_index("ix_debts_creditor_id",    table_name="debts")
    op.drop_index("ix_debts_debtor_id",      table_name="debts")
    op.drop_index("ix_debts_group_id",       table_name="debts")
    op.drop_index("ix_splits_expense_id",    table_name="splits")
    op.drop_index("idx_expenses_active",     table_name="expenses")
    op.drop_index("ix_expenses_group_id",    table_name="expenses")
    op.drop_index("ix_memberships_user_id",  table_name="memberships")
    op.drop_index("ix_memberships_group_id", table_name="memberships")

    op.drop_table("debts")
    op.drop_table("splits")
    op.drop_table("expenses")
    op.drop_table("memberships")
    op.drop_table("groups")
