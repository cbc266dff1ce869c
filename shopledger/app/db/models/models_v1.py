from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopledger.app.db.base import Base
from shopledger.app.db.models.core_types import (
    POStatus,
    MovementType,
    ReturnReason,
    ReturnType,
    ReturnStatus,
    ReferenceType,
)

MONEY = Numeric(14, 2)
QTY = Numeric(14, 3)
RATE = Numeric(5, 2)
# BIGINT keys do not autoincrement on sqlite (tests)
PK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppendOnlyViolation(RuntimeError):
    """Raised when an immutable ledger row is about to be updated or deleted."""


# ---------- MASTER DATA ----------
class Company(Base):
    __tablename__ = "companies"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Branch(Base):
    __tablename__ = "branches"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    company: Mapped[Company] = relationship()
    __table_args__ = (UniqueConstraint("company_id", "code", name="uq_branch_company_code"),)


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (UniqueConstraint("company_id", "name", name="uq_supplier_company_name"),)


class Item(Base):
    __tablename__ = "items"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="PIECE", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # key of the pre-migration inventory table, still sent by older clients
    legacy_inventory_id: Mapped[int | None] = mapped_column(BigInteger, unique=True)

    __table_args__ = (UniqueConstraint("company_id", "code", name="uq_item_company_code"),)


class PaymentMethod(Base):
    __tablename__ = "payment_methods"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class DocumentSequence(Base):
    __tablename__ = "document_sequences"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    key: Mapped[str] = mapped_column(String(16), nullable=False)  # PO / ...
    next_value: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        UniqueConstraint("branch_id", "key", name="uq_document_sequence_branch_key"),
        CheckConstraint("next_value >= 1", name="ck_document_sequence_next_pos"),
    )


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[POStatus] = mapped_column(
        Enum(POStatus, name="po_status"), default=POStatus.pending, nullable=False
    )

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery: Mapped[date | None] = mapped_column(Date)
    delivery_date: Mapped[date | None] = mapped_column(Date)
    invoice_number: Mapped[str | None] = mapped_column(String(100))
    invoice_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)

    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    grand_total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    supplier: Mapped[Supplier] = relationship()
    branch: Mapped[Branch] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    payments: Mapped[list["SupplierPayment"]] = relationship(back_populates="po")

    __mapper_args__ = {"version_id_col": version}
    # branch codes repeat across companies, so numbers do too
    __table_args__ = (
        UniqueConstraint("company_id", "po_number", name="uq_po_company_number"),
        CheckConstraint("paid_amount >= 0", name="ck_po_paid_nonneg"),
        Index("ix_purchase_orders_company_branch", "company_id", "branch_id"),
        Index("ix_purchase_orders_supplier", "supplier_id"),
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    po_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(RATE, default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    returned_quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    item: Mapped[Item] = relationship()

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 100", name="ck_po_line_tax_rate_0_100"),
        CheckConstraint("received_quantity >= 0", name="ck_po_line_received_nonneg"),
        CheckConstraint("received_quantity <= quantity", name="ck_po_line_received_le_qty"),
        CheckConstraint("returned_quantity >= 0", name="ck_po_line_returned_nonneg"),
        CheckConstraint("returned_quantity <= received_quantity", name="ck_po_line_returned_le_received"),
    )


class SupplierPayment(Base):
    __tablename__ = "supplier_payments"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    po_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method_id: Mapped[int] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="RESTRICT"), nullable=False
    )
    reference_number: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="payments")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_supplier_payment_amount_pos"),)


class PurchaseReturn(Base):
    __tablename__ = "purchase_returns"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    line_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_order_lines.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)

    return_quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    return_reason: Mapped[ReturnReason] = mapped_column(Enum(ReturnReason, name="return_reason"), nullable=False)
    return_type: Mapped[ReturnType] = mapped_column(Enum(ReturnType, name="return_type"), nullable=False)
    status: Mapped[ReturnStatus] = mapped_column(
        Enum(ReturnStatus, name="return_status"), default=ReturnStatus.pending, nullable=False
    )
    refund_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    stock_reversed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    refund_processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    replacement_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="SET NULL")
    )
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    line: Mapped[PurchaseOrderLine] = relationship()
    replacement_order: Mapped[PurchaseOrder | None] = relationship(foreign_keys=[replacement_order_id])
    refund_transactions: Mapped[list["RefundTransaction"]] = relationship(
        back_populates="purchase_return", order_by="RefundTransaction.id"
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("return_quantity > 0", name="ck_purchase_return_qty_pos"),
        CheckConstraint("refund_amount >= 0", name="ck_purchase_return_refund_nonneg"),
        Index("ix_purchase_returns_company_status", "company_id", "status"),
    )


class RefundTransaction(Base):
    __tablename__ = "refund_transactions"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    return_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_returns.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    refund_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    payment_method_id: Mapped[int | None] = mapped_column(ForeignKey("payment_methods.id", ondelete="SET NULL"))
    reference_number: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)
    processed_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    purchase_return: Mapped[PurchaseReturn] = relationship(back_populates="refund_transactions")

    __table_args__ = (CheckConstraint("amount > 0", name="ck_refund_amount_pos"),)


# ---------- INVENTORY ----------
class BranchStock(Base):
    __tablename__ = "branch_stock"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    last_purchase_price: Mapped[Decimal | None] = mapped_column(MONEY)
    last_purchase_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"))

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    item: Mapped[Item] = relationship()

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        UniqueConstraint("item_id", "branch_id", name="uq_branch_stock_item_branch"),
        CheckConstraint("quantity >= 0", name="ck_branch_stock_qty_nonneg"),
    )


class StockMovement(Base):
    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    branch_stock_id: Mapped[int] = mapped_column(
        ForeignKey("branch_stock.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(Enum(MovementType, name="movement_type"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)  # signed
    previous_quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    new_quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)

    reference_type: Mapped[ReferenceType | None] = mapped_column(Enum(ReferenceType, name="reference_type"))
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(String(255))

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="ck_stock_movement_qty_nonzero"),
        Index("ix_stock_movements_item_branch_time", "item_id", "branch_id", "created_at"),
        Index("ix_stock_movements_reference", "reference_type", "reference_id"),
    )


# ---------- APPEND-ONLY GUARDS ----------
@event.listens_for(StockMovement, "before_update")
@event.listens_for(RefundTransaction, "before_update")
def _refuse_update(mapper, connection, target):
    raise AppendOnlyViolation(f"{type(target).__name__} {target.id} is append-only")


@event.listens_for(StockMovement, "before_delete")
@event.listens_for(RefundTransaction, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"{type(target).__name__} {target.id} is append-only")
