"""bills, per-line in-stock status

Revision ID: 0002_bills_and_status_workflows
Revises: 0001_replenishment_core
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_bills_and_status_workflows"
down_revision: Union[str, Sequence[str], None] = "0001_replenishment_core"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)

PAYMENT_METHOD = sa.Enum("cash", "card", "upi", "other", name="payment_method")
BILL_STATUS = sa.Enum("pending", "completed", "cancelled", name="bill_status")


def _entry_status():
    # the type already exists on Postgres since 0001
    if op.get_bind().dialect.name == "postgresql":
        return postgresql.ENUM("waiting", "approved", name="entry_status", create_type=False)
    return sa.Enum("waiting", "approved", name="entry_status")


def upgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        with op.get_context().autocommit_block():
            op.execute("ALTER TYPE document_kind ADD VALUE IF NOT EXISTS 'bill'")

    # ---------- in-stock line status ----------
    op.add_column(
        "instock_entry_items",
        sa.Column("status", _entry_status(), nullable=False, server_default="waiting"),
    )
    op.execute(
        "UPDATE instock_entry_items SET status = 'approved' "
        "WHERE entry_id IN (SELECT id FROM instock_entries WHERE status = 'approved')"
    )

    # ---------- bills ----------
    op.create_table(
        "bills",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("bill_number", sa.String(64), nullable=False, unique=True),
        sa.Column("branch_id", sa.BigInteger(), sa.ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("company_id", sa.BigInteger(), sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD),
        sa.Column("status", BILL_STATUS, nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
    )
    op.create_index("ix_bills_created_at", "bills", ["created_at"])
    op.create_index("ix_bills_branch_created", "bills", ["branch_id", "created_at"])

    op.create_table(
        "bill_items",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("bill_id", sa.BigInteger(), sa.ForeignKey("bills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("branch_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.CheckConstraint("quantity > 0", name="ck_bill_item_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_bill_item_price_nonneg"),
    )
    op.create_index("ix_bill_items_bill_id", "bill_items", ["bill_id"])
    op.create_index("ix_bill_items_product_id", "bill_items", ["product_id"])


def downgrade() -> None:
    op.drop_table("bill_items")
    op.drop_table("bills")
    with op.batch_alter_table("instock_entry_items") as batch:
        batch.drop_column("status")

    bind = op.get_bind()
    for enum in (BILL_STATUS, PAYMENT_METHOD):
        enum.drop(bind, checkfirst=True)
    # Postgres cannot drop a value from an enum; 'bill' stays on document_kind
