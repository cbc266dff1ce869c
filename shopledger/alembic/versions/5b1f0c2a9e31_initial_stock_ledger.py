"""initial stock ledger, purchase orders, returns

Revision ID: 5b1f0c2a9e31
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5b1f0c2a9e31"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(14, 2)
QTY = sa.Numeric(14, 3)
RATE = sa.Numeric(5, 2)
TS = sa.DateTime(timezone=True)

# Enum columns store member names
PO_STATUS = sa.Enum(
    "pending", "partially_received", "received", "completed", "cancelled", name="po_status"
)
MOVEMENT_TYPE = sa.Enum(
    "purchase", "sale", "adjustment", "transfer", "service_use", "ret", "damage", "opening_stock",
    name="movement_type",
)
REFERENCE_TYPE = sa.Enum("purchase_order", "purchase_return", "manual", name="reference_type")
RETURN_REASON = sa.Enum(
    "damaged", "wrong_item", "quality_issue", "excess_stock", "expired", "defective", "other",
    name="return_reason",
)
RETURN_TYPE = sa.Enum("refund", "replacement", name="return_type")
RETURN_STATUS = sa.Enum("pending", "confirmed", "rejected", name="return_status")


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True)


def _fk(name: str, target: str, ondelete: str = "RESTRICT", nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.BigInteger(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    # ---------- MASTER DATA ----------
    op.create_table(
        "companies",
        _pk(),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "branches",
        _pk(),
        _fk("company_id", "companies.id"),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("company_id", "code", name="uq_branch_company_code"),
    )
    op.create_table(
        "users",
        _pk(),
        _fk("company_id", "companies.id"),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "suppliers",
        _pk(),
        _fk("company_id", "companies.id"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("company_id", "name", name="uq_supplier_company_name"),
    )
    op.create_table(
        "items",
        _pk(),
        _fk("company_id", "companies.id"),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="PIECE"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("legacy_inventory_id", sa.BigInteger(), unique=True),
        sa.UniqueConstraint("company_id", "code", name="uq_item_company_code"),
    )
    op.create_table(
        "payment_methods",
        _pk(),
        _fk("company_id", "companies.id"),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "document_sequences",
        _pk(),
        _fk("branch_id", "branches.id", ondelete="CASCADE"),
        sa.Column("key", sa.String(16), nullable=False),
        sa.Column("next_value", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("branch_id", "key", name="uq_document_sequence_branch_key"),
        sa.CheckConstraint("next_value >= 1", name="ck_document_sequence_next_pos"),
    )

    # ---------- PROCUREMENT ----------
    op.create_table(
        "purchase_orders",
        _pk(),
        sa.Column("po_number", sa.String(64), nullable=False),
        _fk("company_id", "companies.id"),
        _fk("branch_id", "branches.id"),
        _fk("supplier_id", "suppliers.id"),
        sa.Column("status", PO_STATUS, nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_delivery", sa.Date()),
        sa.Column("delivery_date", sa.Date()),
        sa.Column("invoice_number", sa.String(100)),
        sa.Column("invoice_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("tax_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("grand_total", MONEY, nullable=False, server_default="0"),
        sa.Column("paid_amount", MONEY, nullable=False, server_default="0"),
        _fk("created_by", "users.id"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("company_id", "po_number", name="uq_po_company_number"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_po_paid_nonneg"),
    )
    op.create_index("ix_purchase_orders_company_branch", "purchase_orders", ["company_id", "branch_id"])
    op.create_index("ix_purchase_orders_supplier", "purchase_orders", ["supplier_id"])

    op.create_table(
        "purchase_order_lines",
        _pk(),
        _fk("po_id", "purchase_orders.id", ondelete="CASCADE"),
        _fk("item_id", "items.id"),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("tax_rate", RATE, nullable=False, server_default="0"),
        sa.Column("tax_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("line_total", MONEY, nullable=False, server_default="0"),
        sa.Column("received_quantity", QTY, nullable=False, server_default="0"),
        sa.Column("returned_quantity", QTY, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
        sa.CheckConstraint("tax_rate >= 0 AND tax_rate <= 100", name="ck_po_line_tax_rate_0_100"),
        sa.CheckConstraint("received_quantity >= 0", name="ck_po_line_received_nonneg"),
        sa.CheckConstraint("received_quantity <= quantity", name="ck_po_line_received_le_qty"),
        sa.CheckConstraint("returned_quantity >= 0", name="ck_po_line_returned_nonneg"),
        sa.CheckConstraint("returned_quantity <= received_quantity", name="ck_po_line_returned_le_received"),
    )
    op.create_index("ix_purchase_order_lines_po_id", "purchase_order_lines", ["po_id"])

    op.create_table(
        "supplier_payments",
        _pk(),
        _fk("po_id", "purchase_orders.id"),
        _fk("supplier_id", "suppliers.id"),
        _fk("company_id", "companies.id"),
        _fk("branch_id", "branches.id"),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        _fk("payment_method_id", "payment_methods.id"),
        sa.Column("reference_number", sa.String(100)),
        sa.Column("notes", sa.Text()),
        _fk("created_by", "users.id"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_supplier_payment_amount_pos"),
    )
    op.create_index("ix_supplier_payments_po_id", "supplier_payments", ["po_id"])

    op.create_table(
        "purchase_returns",
        _pk(),
        _fk("line_id", "purchase_order_lines.id"),
        _fk("company_id", "companies.id"),
        _fk("branch_id", "branches.id"),
        sa.Column("return_quantity", QTY, nullable=False),
        sa.Column("return_reason", RETURN_REASON, nullable=False),
        sa.Column("return_type", RETURN_TYPE, nullable=False),
        sa.Column("status", RETURN_STATUS, nullable=False),
        sa.Column("refund_amount", MONEY, nullable=False),
        sa.Column("stock_reversed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refund_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _fk("replacement_order_id", "purchase_orders.id", ondelete="SET NULL", nullable=True),
        sa.Column("notes", sa.Text()),
        _fk("created_by", "users.id"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("return_quantity > 0", name="ck_purchase_return_qty_pos"),
        sa.CheckConstraint("refund_amount >= 0", name="ck_purchase_return_refund_nonneg"),
    )
    op.create_index("ix_purchase_returns_line_id", "purchase_returns", ["line_id"])
    op.create_index("ix_purchase_returns_company_status", "purchase_returns", ["company_id", "status"])

    op.create_table(
        "refund_transactions",
        _pk(),
        _fk("return_id", "purchase_returns.id"),
        _fk("company_id", "companies.id"),
        _fk("branch_id", "branches.id"),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("refund_date", TS, nullable=False, server_default=sa.func.now()),
        _fk("payment_method_id", "payment_methods.id", ondelete="SET NULL", nullable=True),
        sa.Column("reference_number", sa.String(100)),
        sa.Column("notes", sa.Text()),
        _fk("processed_by", "users.id"),
        sa.CheckConstraint("amount > 0", name="ck_refund_amount_pos"),
    )
    op.create_index("ix_refund_transactions_return_id", "refund_transactions", ["return_id"])

    # ---------- INVENTORY ----------
    op.create_table(
        "branch_stock",
        _pk(),
        _fk("company_id", "companies.id"),
        _fk("branch_id", "branches.id"),
        _fk("item_id", "items.id"),
        sa.Column("quantity", QTY, nullable=False, server_default="0"),
        sa.Column("last_purchase_price", MONEY),
        sa.Column("last_purchase_date", TS),
        _fk("supplier_id", "suppliers.id", ondelete="SET NULL", nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("item_id", "branch_id", name="uq_branch_stock_item_branch"),
        sa.CheckConstraint("quantity >= 0", name="ck_branch_stock_qty_nonneg"),
    )

    op.create_table(
        "stock_movements",
        _pk(),
        _fk("branch_stock_id", "branch_stock.id"),
        _fk("company_id", "companies.id"),
        _fk("branch_id", "branches.id"),
        _fk("item_id", "items.id"),
        sa.Column("movement_type", MOVEMENT_TYPE, nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("previous_quantity", QTY, nullable=False),
        sa.Column("new_quantity", QTY, nullable=False),
        sa.Column("reference_type", REFERENCE_TYPE),
        sa.Column("reference_id", sa.BigInteger()),
        sa.Column("notes", sa.String(255)),
        _fk("user_id", "users.id"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity <> 0", name="ck_stock_movement_qty_nonzero"),
    )
    op.create_index("ix_stock_movements_branch_stock_id", "stock_movements", ["branch_stock_id"])
    op.create_index(
        "ix_stock_movements_item_branch_time", "stock_movements", ["item_id", "branch_id", "created_at"]
    )
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference_type", "reference_id"])


def downgrade() -> None:
    op.drop_table("stock_movements")
    op.drop_table("branch_stock")
    op.drop_table("refund_transactions")
    op.drop_table("purchase_returns")
    op.drop_table("supplier_payments")
    op.drop_table("purchase_order_lines")
    op.drop_table("purchase_orders")
    op.drop_table("document_sequences")
    op.drop_table("payment_methods")
    op.drop_table("items")
    op.drop_table("suppliers")
    op.drop_table("users")
    op.drop_table("branches")
    op.drop_table("companies")

    bind = op.get_bind()
    for enum in (RETURN_STATUS, RETURN_TYPE, RETURN_REASON, REFERENCE_TYPE, MOVEMENT_TYPE, PO_STATUS):
        enum.drop(bind, checkfirst=True)
