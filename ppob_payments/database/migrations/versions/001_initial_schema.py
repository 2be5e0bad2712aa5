"""Initial database schema

Revision ID: 001
Revises:
Create Date: 2025-06-10 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "transactions",
        sa.Column("ref_id", sa.String(length=64), nullable=False),
        sa.Column("customer_no", sa.String(length=64), nullable=False),
        sa.Column("product_code", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("rc", sa.String(length=8), nullable=True),
        sa.Column("sn", sa.String(length=255), nullable=True),
        sa.Column("price", sa.BigInteger(), nullable=True),
        sa.Column("buyer_last_saldo", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
        sa.CheckConstraint(
            "status IN ('Pending', 'Sukses', 'Gagal')",
            name="valid_transaction_status",
        ),
        sa.PrimaryKeyConstraint("ref_id"),
    )
    op.create_index(
        op.f("ix_transactions_customer_no"), "transactions", ["customer_no"], unique=False
    )
    op.create_index(op.f("ix_transactions_status"), "transactions", ["status"], unique=False)
    op.create_index(
        "idx_transactions_status_updated",
        "transactions",
        ["status", "updated_at"],
        unique=False,
    )
    op.create_index(
        "idx_transactions_status_created",
        "transactions",
        ["status", "created_at", "ref_id"],
        unique=False,
    )

    op.create_table(
        "transaction_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("ref_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_transaction_events_ref_id"), "transaction_events", ["ref_id"], unique=False
    )
    op.create_index(
        op.f("ix_transaction_events_created_at"),
        "transaction_events",
        ["created_at"],
        unique=False,
    )
    op.create_index(
        "idx_transaction_events_type", "transaction_events", ["event_type"], unique=False
    )

    op.create_table(
        "products",
        sa.Column("buyer_sku_code", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("brand", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("seller_name", sa.String(length=255), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("buyer_product_status", sa.Boolean(), nullable=False),
        sa.Column("seller_product_status", sa.Boolean(), nullable=False),
        sa.Column("unlimited_stock", sa.Boolean(), nullable=False),
        sa.Column("stock", sa.BigInteger(), nullable=False),
        sa.Column("multi", sa.Boolean(), nullable=False),
        sa.Column("start_cut_off", sa.String(length=8), nullable=True),
        sa.Column("end_cut_off", sa.String(length=8), nullable=True),
        sa.Column("desc", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
        sa.PrimaryKeyConstraint("buyer_sku_code"),
    )
    op.create_index(op.f("ix_products_category"), "products", ["category"], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(op.f("ix_products_category"), table_name="products")
    op.drop_table("products")

    op.drop_index("idx_transaction_events_type", table_name="transaction_events")
    op.drop_index(op.f("ix_transaction_events_created_at"), table_name="transaction_events")
    op.drop_index(op.f("ix_transaction_events_ref_id"), table_name="transaction_events")
    op.drop_table("transaction_events")

    op.drop_index("idx_transactions_status_created", table_name="transactions")
    op.drop_index("idx_transactions_status_updated", table_name="transactions")
    op.drop_index(op.f("ix_transactions_status"), table_name="transactions")
    op.drop_index(op.f("ix_transactions_customer_no"), table_name="transactions")
    op.drop_table("transactions")
