"""initial purchasing schema

Revision ID: 4b7e2c91d0a3
Revises:
Create Date: 2026-10-12
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "4b7e2c91d0a3"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PO_STATUSES = (
    "draft",
    "pending_approval",
    "approved",
    "sent_to_supplier",
    "supplier_confirmed",
    "partially_received",
    "fully_received",
    "invoiced",
    "completed",
    "cancelled",
)


def upgrade() -> None:
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("email", sa.String(255)),
        sa.Column("country", sa.String(2)),
        sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="14"),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_nonneg"),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "supplier_id",
            sa.Integer(),
            sa.ForeignKey("suppliers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum(*PO_STATUSES, name="po_status"), nullable=False),
        sa.Column(
            "priority",
            sa.Enum("normal", "high", "urgent", name="po_priority"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("dispatch_blocked", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("invoice_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("invoice_created", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by", sa.String(200)),
        sa.CheckConstraint("total_amount >= 0", name="ck_po_total_amount_nonneg"),
    )

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "po_id",
            sa.Integer(),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_sku", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("qty_ordered", sa.Integer(), nullable=False),
        sa.Column("qty_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("qty_ordered >= 0", name="ck_po_line_qty_ordered_nonneg"),
        sa.CheckConstraint("qty_received >= 0", name="ck_po_line_qty_received_nonneg"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )
    op.create_index("ix_purchase_order_lines_po_id", "purchase_order_lines", ["po_id"])

    op.create_table(
        "goods_receipts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "po_id",
            sa.Integer(),
            sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_by", sa.String(200), nullable=False),
        sa.Column(
            "delivery_condition",
            sa.Enum("good", "damaged", "partial", name="delivery_condition"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("idempotency_key", sa.String(64), unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_goods_receipts_po_id", "goods_receipts", ["po_id"])

    op.create_table(
        "goods_receipt_lines",
        sa.Column(
            "receipt_id",
            sa.Integer(),
            sa.ForeignKey("goods_receipts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "line_id",
            sa.Integer(),
            sa.ForeignKey("purchase_order_lines.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("qty_received", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("qty_received >= 0", name="ck_gr_line_qty_received_nonneg"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor", sa.String(200)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("meta", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("goods_receipt_lines")
    op.drop_index("ix_goods_receipts_po_id", table_name="goods_receipts")
    op.drop_table("goods_receipts")
    op.drop_index("ix_purchase_order_lines_po_id", table_name="purchase_order_lines")
    op.drop_table("purchase_order_lines")
    op.drop_table("purchase_orders")
    op.drop_table("suppliers")

    # Postgres : les types ENUM survivent au DROP TABLE
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return
    for enum_name in ("delivery_condition", "po_priority", "po_status"):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
