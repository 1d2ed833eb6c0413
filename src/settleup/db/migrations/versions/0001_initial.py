"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "group_members",
        sa.Column("group_id", sa.Text(), primary_key=True),
        sa.Column("user_id", sa.Text(), primary_key=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("group_id", sa.Text(), nullable=False),
        sa.Column("expense_id", sa.Text(), nullable=False),
        sa.Column("payer_id", sa.Text(), nullable=False),
        sa.Column("participant_id", sa.Text(), nullable=False),
        sa.Column("owed_amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("owed_amount >= 0", name="expense_splits_amount_check"),
    )

    op.create_table(
        "settlements",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("group_id", sa.Text(), nullable=False),
        sa.Column("payer_id", sa.Text(), nullable=False),
        sa.Column("receiver_id", sa.Text(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("cancel_reason", sa.Text()),
        sa.Column("payment_details", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status in ('pending','completed','cancelled')", name="settlements_status_check"),
        sa.CheckConstraint("amount > 0", name="settlements_amount_check"),
        sa.CheckConstraint("payer_id <> receiver_id", name="settlements_parties_check"),
    )

    op.create_table(
        "friend_weights",
        sa.Column("user_a", sa.Text(), primary_key=True),
        sa.Column("user_b", sa.Text(), primary_key=True),
        sa.Column("weight", sa.Float(), nullable=False),
    )

    op.create_table(
        "ledger_versions",
        sa.Column("group_id", sa.Text(), primary_key=True),
        sa.Column("currency", sa.String(length=3), primary_key=True),
        sa.Column("version", sa.BigInteger(), nullable=False, server_default="0"),
    )

    op.create_index("idx_expense_splits_group_currency", "expense_splits", ["group_id", "currency"])
    op.create_index("idx_settlements_group_status", "settlements", ["group_id", "status"])
    op.create_index("idx_settlements_payer_status", "settlements", ["payer_id", "status"])
    op.create_index("idx_settlements_receiver_status", "settlements", ["receiver_id", "status"])


def downgrade() -> None:
    op.drop_index("idx_settlements_receiver_status", table_name="settlements")
    op.drop_index("idx_settlements_payer_status", table_name="settlements")
    op.drop_index("idx_settlements_group_status", table_name="settlements")
    op.drop_index("idx_expense_splits_group_currency", table_name="expense_splits")

    op.drop_table("ledger_versions")
    op.drop_table("friend_weights")
    op.drop_table("settlements")
    op.drop_table("expense_splits")
    op.drop_table("group_members")
