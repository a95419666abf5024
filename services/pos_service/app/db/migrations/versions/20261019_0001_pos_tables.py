"""create point-of-sale payment tables

Revision ID: pos_20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "pos_20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("merchant_id", sa.Integer, nullable=False, index=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("stock", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_table(
        "merchant_settings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("merchant_id", sa.Integer, nullable=False, unique=True, index=True),
        sa.Column("allow_credit", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("allow_debit", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("allow_pix", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("allow_cash", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("stock_enabled", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("allow_negative_stock", sa.Boolean, nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("merchant_id", sa.Integer, nullable=False, index=True),
        sa.Column("intent_id", sa.Integer, nullable=True, unique=True),
        sa.Column("payment_method", sa.String(8), nullable=False),
        sa.Column("status", sa.String(12), nullable=False),
        sa.Column("total_cents", sa.Integer, nullable=False),
        sa.Column("cash_received_cents", sa.Integer, nullable=True),
        sa.Column("change_cents", sa.Integer, nullable=True),
        sa.Column("authorization_code", sa.String(64), nullable=True),
        sa.Column("transaction_id", sa.String(128), nullable=True),
        sa.Column("acquirer", sa.String(32), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("sale_id", sa.Integer, sa.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", sa.Integer, nullable=False, index=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price_cents", sa.Integer, nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "payment_intents",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("merchant_id", sa.Integer, nullable=False, index=True),
        sa.Column("sale_id", sa.Integer, sa.ForeignKey("sales.id"), nullable=True),
        sa.Column("print_job_id", sa.Integer, nullable=True),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_method", sa.String(8), nullable=False),
        sa.Column("status", sa.String(12), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("items", sa.JSON, nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("provider", sa.String(32), nullable=True),
        sa.Column("provider_ref", sa.String(128), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("merchant_id", "idempotency_key", name="uq_payment_intent_idem"),
    )
    op.create_index("ix_payment_intent_status_expires", "payment_intents", ["status", "expires_at"])
    op.create_table(
        "print_jobs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("merchant_id", sa.Integer, nullable=False, index=True),
        sa.Column("sale_id", sa.Integer, nullable=False, unique=True),
        sa.Column("intent_id", sa.Integer, nullable=True),
        sa.Column("status", sa.String(12), nullable=False),
        sa.Column("copies", sa.Integer, nullable=False, server_default="1"),
        sa.Column("payload", sa.JSON, nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "intent_id",
            sa.Integer,
            sa.ForeignKey("payment_intents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("status", sa.String(12), nullable=False),
        sa.Column("provider", sa.String(32), nullable=True),
        sa.Column("provider_ref", sa.String(128), nullable=True),
        sa.Column("data", sa.JSON, nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("payment_transactions")
    op.drop_table("print_jobs")
    op.drop_index("ix_payment_intent_status_expires", table_name="payment_intents")
    op.drop_table("payment_intents")
    op.drop_table("sale_items")
    op.drop_table("sales")
    op.drop_table("merchant_settings")
    op.drop_table("products")
