"""replenishment core: catalog, sequences, stock orders, entries, returns

Revision ID: 0001_replenishment_core
Revises:
Create Date: 2026-01-20
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_replenishment_core"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)

DOCUMENT_KIND = sa.Enum("stock_order", "instock_entry", "return_order", name="document_kind")
STAGE = sa.Enum("ordered", "sending", "confirmed", "picked", "received", name="stage")
ENTRY_STATUS = sa.Enum("waiting", "approved", name="entry_status")
RETURN_STATUS = sa.Enum("pending", "accepted", "rejected", name="return_status")


def upgrade() -> None:
    # ---------- master data ----------
    op.create_table(
        "companies",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
    )
    op.create_table(
        "branches",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("company_id", sa.BigInteger(), sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_branches_company_id", "branches", ["company_id"])
    op.create_table(
        "departments",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
    )
    op.create_table(
        "categories",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("department_id", sa.BigInteger(), sa.ForeignKey("departments.id", ondelete="SET NULL")),
        sa.Column("name", sa.String(200), nullable=False),
    )
    op.create_table(
        "products",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("category_id", sa.BigInteger(), sa.ForeignKey("categories.id", ondelete="SET NULL")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("price >= 0", name="ck_product_price_nonneg"),
    )

    # ---------- sequences ----------
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("branch_code", sa.String(16), nullable=False),
        sa.Column("kind", DOCUMENT_KIND, nullable=False),
        sa.Column("local_day", sa.Date(), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.UniqueConstraint("branch_code", "kind", "local_day", name="uq_document_sequence_scope"),
        sa.CheckConstraint("last_value > 0", name="ck_document_sequence_positive"),
    )

    # ---------- stock orders ----------
    op.create_table(
        "stock_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("invoice_number", sa.String(64), nullable=False, unique=True),
        sa.Column("branch_id", sa.BigInteger(), sa.ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("company_id", sa.BigInteger(), sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("delivery_date", TS, nullable=False),
        sa.Column("is_live_at_creation", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text()),
    )
    op.create_index("ix_stock_orders_created_at", "stock_orders", ["created_at"])
    op.create_index("ix_stock_orders_delivery_date", "stock_orders", ["delivery_date"])
    op.create_index("ix_stock_orders_branch_created", "stock_orders", ["branch_id", "created_at"])

    op.create_table(
        "stock_order_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("stock_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("in_stock_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("required_qty", sa.Integer(), nullable=False),
        sa.Column("required_date", TS),
        sa.Column("sending_qty", sa.Integer()),
        sa.Column("sending_date", TS),
        sa.Column("confirmed_qty", sa.Integer()),
        sa.Column("confirmed_date", TS),
        sa.Column("picked_qty", sa.Integer()),
        sa.Column("picked_date", TS),
        sa.Column("received_qty", sa.Integer()),
        sa.Column("received_date", TS),
        sa.Column("difference_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("order_id", "line_no", name="uq_stock_order_item_line"),
        sa.CheckConstraint("required_qty >= 0", name="ck_item_required_nonneg"),
        sa.CheckConstraint("in_stock_qty >= 0", name="ck_item_in_stock_nonneg"),
    )
    op.create_index("ix_stock_order_items_order_id", "stock_order_items", ["order_id"])
    op.create_index("ix_stock_order_items_product_id", "stock_order_items", ["product_id"])

    op.create_table(
        "stage_corrections",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "item_id", sa.BigInteger(), sa.ForeignKey("stock_order_items.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("stage", STAGE, nullable=False),
        sa.Column("old_qty", sa.Integer()),
        sa.Column("old_at", TS),
        sa.Column("new_qty", sa.Integer(), nullable=False),
        sa.Column("new_at", TS, nullable=False),
        sa.Column("corrected_by", sa.String(64)),
        sa.Column("reason", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_stage_corrections_item", "stage_corrections", ["item_id", "stage"])

    # ---------- in-stock entries ----------
    op.create_table(
        "instock_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("invoice_number", sa.String(64), nullable=False, unique=True),
        sa.Column("branch_id", sa.BigInteger(), sa.ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("status", ENTRY_STATUS, nullable=False),
    )
    op.create_index("ix_instock_entries_created_at", "instock_entries", ["created_at"])
    op.create_table(
        "instock_entry_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "entry_id", sa.BigInteger(), sa.ForeignKey("instock_entries.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("instock_qty", sa.Integer(), nullable=False),
        sa.CheckConstraint("instock_qty >= 0", name="ck_instock_item_qty_nonneg"),
    )
    op.create_index("ix_instock_entry_items_entry_id", "instock_entry_items", ["entry_id"])
    op.create_index("ix_instock_entry_items_product_id", "instock_entry_items", ["product_id"])

    # ---------- return orders ----------
    op.create_table(
        "return_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("return_number", sa.String(64), nullable=False, unique=True),
        sa.Column("branch_id", sa.BigInteger(), sa.ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("status", RETURN_STATUS, nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
    )
    op.create_index("ix_return_orders_created_at", "return_orders", ["created_at"])
    op.create_table(
        "return_order_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column(
            "return_order_id", sa.BigInteger(), sa.ForeignKey("return_orders.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_return_item_qty_pos"),
    )
    op.create_index("ix_return_order_items_return_order_id", "return_order_items", ["return_order_id"])
    op.create_index("ix_return_order_items_product_id", "return_order_items", ["product_id"])


def downgrade() -> None:
    op.drop_table("return_order_items")
    op.drop_table("return_orders")
    op.drop_table("instock_entry_items")
    op.drop_table("instock_entries")
    op.drop_table("stage_corrections")
    op.drop_table("stock_order_items")
    op.drop_table("stock_orders")
    op.drop_table("document_sequences")
    op.drop_table("products")
    op.drop_table("categories")
    op.drop_table("departments")
    op.drop_table("branches")
    op.drop_table("companies")

    bind = op.get_bind()
    for enum in (RETURN_STATUS, ENTRY_STATUS, STAGE, DOCUMENT_KIND):
        enum.drop(bind, checkfirst=True)
