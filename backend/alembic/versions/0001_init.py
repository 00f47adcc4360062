"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "credit_accounts" not in existing_tables:
        op.create_table(
            "credit_accounts",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=True),
            sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        )
    idxs = existing_indexes("credit_accounts")
    if "ix_credit_accounts_user_id" not in idxs:
        op.create_index("ix_credit_accounts_user_id", "credit_accounts", ["user_id"])

    if "credit_ledger" not in existing_tables:
        op.create_table(
            "credit_ledger",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("event_type", sa.String(), nullable=False),
            sa.Column("delta", sa.Integer(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("idempotency_key", sa.String(), nullable=True),
            sa.Column("balance_after", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.UniqueConstraint("idempotency_key", name="uq_credit_ledger_idempotency_key"),
        )
    idxs = existing_indexes("credit_ledger")
    if "ix_credit_ledger_id" not in idxs:
        op.create_index("ix_credit_ledger_id", "credit_ledger", ["id"])
    if "ix_credit_ledger_user_id" not in idxs:
        op.create_index("ix_credit_ledger_user_id", "credit_ledger", ["user_id"])
    if "ix_credit_ledger_event_type" not in idxs:
        op.create_index("ix_credit_ledger_event_type", "credit_ledger", ["event_type"])
    if "ix_credit_ledger_source" not in idxs:
        op.create_index("ix_credit_ledger_source", "credit_ledger", ["source"])

    if "payment_orders" not in existing_tables:
        op.create_table(
            "payment_orders",
            sa.Column("order_id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=True),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("plan_id", sa.String(), nullable=True),
            sa.Column("receipt", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("payment_id", sa.String(), nullable=True),
            sa.Column("method", sa.String(), nullable=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("contact", sa.String(), nullable=True),
            sa.Column("notes", sa.JSON(), nullable=True),
            sa.Column("raw_gateway_fields", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=True),
        )
    idxs = existing_indexes("payment_orders")
    if "ix_payment_orders_order_id" not in idxs:
        op.create_index("ix_payment_orders_order_id", "payment_orders", ["order_id"])
    if "ix_payment_orders_user_id" not in idxs:
        op.create_index("ix_payment_orders_user_id", "payment_orders", ["user_id"])
    if "ix_payment_orders_plan_id" not in idxs:
        op.create_index("ix_payment_orders_plan_id", "payment_orders", ["plan_id"])
    if "ix_payment_orders_status" not in idxs:
        op.create_index("ix_payment_orders_status", "payment_orders", ["status"])
    if "ix_payment_orders_payment_id" not in idxs:
        op.create_index("ix_payment_orders_payment_id", "payment_orders", ["payment_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_orders_payment_id", table_name="payment_orders")
    op.drop_index("ix_payment_orders_status", table_name="payment_orders")
    op.drop_index("ix_payment_orders_plan_id", table_name="payment_orders")
    op.drop_index("ix_payment_orders_user_id", table_name="payment_orders")
    op.drop_index("ix_payment_orders_order_id", table_name="payment_orders")
    op.drop_table("payment_orders")

    op.drop_index("ix_credit_ledger_source", table_name="credit_ledger")
    op.drop_index("ix_credit_ledger_event_type", table_name="credit_ledger")
    op.drop_index("ix_credit_ledger_user_id", table_name="credit_ledger")
    op.drop_index("ix_credit_ledger_id", table_name="credit_ledger")
    op.drop_table("credit_ledger")

    op.drop_index("ix_credit_accounts_user_id", table_name="credit_accounts")
    op.drop_table("credit_accounts")
