"""
Procurement service.

Purchase order lifecycle: creation, edits, receiving, payments, deletion.
Stock is never written here: received quantities go through
``shopledger.services.inventory.apply_movement``.

Status machine (PARTIALLY_RECEIVED / RECEIVED are only entered by receiving):

    PENDING            -> PARTIALLY_RECEIVED, RECEIVED, CANCELLED
    PARTIALLY_RECEIVED -> PARTIALLY_RECEIVED, RECEIVED, CANCELLED
    RECEIVED           -> COMPLETED, CANCELLED
    COMPLETED, CANCELLED: terminal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from shopledger.app.db.models.models_v1 import (
    Branch,
    PurchaseOrder,
    PurchaseOrderLine,
    Supplier,
    SupplierPayment,
    utcnow,
)
from shopledger.app.db.models.core_types import MovementType, POStatus, ReferenceType
from shopledger.services import master_data
from shopledger.services.atomic import run_atomic
from shopledger.services.decimals import D, ZERO, money2, qty3
from shopledger.services.errors import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    QuantityExceededError,
)
from shopledger.services.inventory import apply_movement
from shopledger.services.master_data import ItemRef
from shopledger.services.numbering import generate_po_number

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[POStatus, set[POStatus]] = {
    POStatus.pending: {POStatus.partially_received, POStatus.received, POStatus.cancelled},
    POStatus.partially_received: {POStatus.partially_received, POStatus.received, POStatus.cancelled},
    POStatus.received: {POStatus.completed, POStatus.cancelled},
    POStatus.completed: set(),
    POStatus.cancelled: set(),
}
TERMINAL_STATUSES = {POStatus.completed, POStatus.cancelled}
RECEIVING_STATUSES = {POStatus.partially_received, POStatus.received}
RECEIVABLE_STATUSES = {POStatus.pending, POStatus.partially_received}


@dataclass(frozen=True)
class LineInput:
    item: ItemRef
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = ZERO


@dataclass(frozen=True)
class ReceiveInput:
    line_id: int
    received_qty: Decimal


@dataclass
class PurchaseOrderPatch:
    """Fields left as None are not touched."""

    supplier_id: int | None = None
    order_date: date | None = None
    expected_delivery: date | None = None
    delivery_date: date | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    notes: str | None = None
    status: POStatus | None = None
    lines: list[LineInput] | None = field(default=None)


# ---------- STATUS ----------
def ensure_not_terminal(po: PurchaseOrder) -> None:
    if po.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Cannot modify {po.status.value.lower()} purchase order",
            po_id=po.id,
            status=po.status.value,
        )


def ensure_transition(po: PurchaseOrder, target: POStatus, *, by_receiving: bool = False) -> None:
    ensure_not_terminal(po)
    if target in RECEIVING_STATUSES and not by_receiving:
        raise InvalidStateError(f"{target.value} is set by receiving items, not by hand", po_id=po.id)
    if target not in ALLOWED_TRANSITIONS.get(po.status, set()):
        raise InvalidStateError(
            f"Invalid status change {po.status.value} -> {target.value}",
            po_id=po.id,
        )


# ---------- TOTALS ----------
def compute_line(line: PurchaseOrderLine) -> Decimal:
    """Fill tax_amount / line_total; returns the pre-tax subtotal."""
    sub_total = money2(D(line.quantity) * D(line.unit_price))
    tax = money2(sub_total * (D(line.tax_rate) / Decimal("100")))
    line.tax_amount = tax
    line.line_total = money2(sub_total + tax)
    return sub_total


def apply_totals(po: PurchaseOrder) -> None:
    total = ZERO
    tax = ZERO
    for line in po.lines:
        total += compute_line(line)
        tax += D(line.tax_amount)

    po.total_amount = money2(total)
    po.tax_amount = money2(tax)
    po.grand_total = money2(po.total_amount + po.tax_amount)


def _validate_lines(lines: Sequence[LineInput]) -> None:
    if not lines:
        raise InvalidInputError("At least one item is required")
    for ln in lines:
        if D(ln.quantity) <= 0:
            raise InvalidInputError("Quantity must be greater than 0")
        if D(ln.unit_price) < 0:
            raise InvalidInputError("Unit price must not be negative")
        if not (ZERO <= D(ln.tax_rate) <= Decimal("100")):
            raise InvalidInputError("Tax rate must be between 0 and 100")


def _build_lines(db: Session, *, company_id: int, lines: Sequence[LineInput]) -> list[PurchaseOrderLine]:
    items = master_data.resolve_items(db, company_id=company_id, refs=[ln.item for ln in lines])
    return [
        PurchaseOrderLine(
            item_id=item.id,
            quantity=qty3(ln.quantity),
            unit_price=money2(ln.unit_price),
            tax_rate=money2(ln.tax_rate),
            received_quantity=ZERO,
            returned_quantity=ZERO,
        )
        for item, ln in zip(items, lines)
    ]


# ---------- LOADERS ----------
def load_order(db: Session, order_id: int, *, company_id: int, lock: bool = False) -> PurchaseOrder:
    stmt = (
        select(PurchaseOrder)
        .where(PurchaseOrder.id == order_id)
        .where(PurchaseOrder.company_id == company_id)
    )
    if lock:
        stmt = stmt.with_for_update()
    po = db.execute(stmt).scalar_one_or_none()
    if not po:
        raise NotFoundError("Purchase order not found", po_id=order_id)
    return po


def _lock_lines(db: Session, po_id: int) -> list[PurchaseOrderLine]:
    return list(
        db.execute(
            select(PurchaseOrderLine)
            .where(PurchaseOrderLine.po_id == po_id)
            .order_by(PurchaseOrderLine.id)
            .with_for_update()
        )
        .scalars()
        .all()
    )


# ---------- CREATE ----------
def open_purchase_order(
    db: Session,
    *,
    company_id: int,
    branch: Branch,
    supplier: Supplier,
    lines: list[PurchaseOrderLine],
    created_by: int,
    order_date: date | None = None,
    expected_delivery: date | None = None,
    invoice_number: str | None = None,
    invoice_date: date | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Number, total and add a PENDING order built from ready line rows.

    Runs inside the caller's unit of work (also used for replacement orders).
    """
    po = PurchaseOrder(
        po_number=generate_po_number(db, branch),
        company_id=company_id,
        branch_id=branch.id,
        supplier_id=supplier.id,
        status=POStatus.pending,
        order_date=order_date or utcnow().date(),
        expected_delivery=expected_delivery,
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        notes=notes,
        paid_amount=ZERO,
        created_by=created_by,
    )
    po.lines = lines
    apply_totals(po)
    db.add(po)
    db.flush()
    return po


def create_purchase_order(
    db: Session,
    *,
    company_id: int,
    supplier_id: int,
    branch_id: int,
    lines: Sequence[LineInput],
    created_by: int,
    order_date: date | None = None,
    expected_delivery: date | None = None,
    invoice_number: str | None = None,
    invoice_date: date | None = None,
    notes: str | None = None,
) -> PurchaseOrder:
    lines = list(lines)
    _validate_lines(lines)

    def _work() -> PurchaseOrder:
        master_data.get_user(db, company_id=company_id, user_id=created_by)
        supplier = master_data.get_supplier(db, company_id=company_id, supplier_id=supplier_id)
        branch = master_data.get_branch(db, company_id=company_id, branch_id=branch_id)
        rows = _build_lines(db, company_id=company_id, lines=lines)
        return open_purchase_order(
            db,
            company_id=company_id,
            branch=branch,
            supplier=supplier,
            lines=rows,
            created_by=created_by,
            order_date=order_date,
            expected_delivery=expected_delivery,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            notes=notes,
        )

    po = run_atomic(db, _work, label="create_purchase_order")
    logger.info("Purchase order created po=%s id=%s company=%s user=%s", po.po_number, po.id, company_id, created_by)
    return po


# ---------- UPDATE ----------
def update_purchase_order(
    db: Session,
    order_id: int,
    *,
    company_id: int,
    patch: PurchaseOrderPatch,
) -> PurchaseOrder:
    if patch.lines is not None:
        _validate_lines(patch.lines)

    def _work() -> PurchaseOrder:
        po = load_order(db, order_id, company_id=company_id, lock=True)
        ensure_not_terminal(po)

        if patch.supplier_id is not None and patch.supplier_id != po.supplier_id:
            supplier = master_data.get_supplier(db, company_id=company_id, supplier_id=patch.supplier_id)
            po.supplier_id = supplier.id
        if patch.order_date is not None:
            po.order_date = patch.order_date
        if patch.expected_delivery is not None:
            po.expected_delivery = patch.expected_delivery
        if patch.delivery_date is not None:
            po.delivery_date = patch.delivery_date
        if patch.invoice_number is not None:
            po.invoice_number = patch.invoice_number
        if patch.invoice_date is not None:
            po.invoice_date = patch.invoice_date
        if patch.notes is not None:
            po.notes = patch.notes

        if patch.lines is not None:
            current = _lock_lines(db, po.id)
            if any(D(line.received_quantity) > 0 for line in current):
                raise InvalidStateError(
                    "Cannot replace lines of a purchase order with received items",
                    po_id=po.id,
                )
            po.lines = _build_lines(db, company_id=company_id, lines=patch.lines)
            apply_totals(po)

        if patch.status is not None and patch.status != po.status:
            ensure_transition(po, patch.status)
            po.status = patch.status

        db.flush()
        return po

    po = run_atomic(db, _work, label="update_purchase_order")
    logger.info("Purchase order updated id=%s company=%s", po.id, company_id)
    return po


def update_status(db: Session, order_id: int, *, company_id: int, status: POStatus) -> PurchaseOrder:
    def _work() -> PurchaseOrder:
        po = load_order(db, order_id, company_id=company_id, lock=True)
        ensure_transition(po, status)
        po.status = status
        db.flush()
        return po

    po = run_atomic(db, _work, label="update_status")
    logger.info("Purchase order status updated id=%s status=%s", po.id, status.value)
    return po


# ---------- RECEIVE ----------
def receive_items(
    db: Session,
    order_id: int,
    *,
    company_id: int,
    items: Iterable[ReceiveInput],
    received_by: int,
    delivery_date: date | None = None,
) -> PurchaseOrder:
    """
    Record delivered quantities and put them into branch stock.

    All lines are validated before anything is written; one call is one
    unit of work (lines, stock, movements, status).
    """
    requested: dict[int, Decimal] = {}
    for it in items:
        qty = qty3(it.received_qty)
        if qty <= 0:
            raise InvalidInputError("Received quantity must be greater than 0", line_id=it.line_id)
        requested[int(it.line_id)] = requested.get(int(it.line_id), ZERO) + qty
    if not requested:
        raise InvalidInputError("At least one item is required")

    def _work() -> PurchaseOrder:
        master_data.get_user(db, company_id=company_id, user_id=received_by)
        po = load_order(db, order_id, company_id=company_id, lock=True)
        if po.status not in RECEIVABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot receive items for {po.status.value.lower()} purchase order",
                po_id=po.id,
            )

        lines = {int(line.id): line for line in _lock_lines(db, po.id)}

        # ---------- VALIDATE ----------
        plan: list[tuple[PurchaseOrderLine, Decimal]] = []
        for line_id, qty in requested.items():
            line = lines.get(line_id)
            if line is None:
                raise NotFoundError(f"Purchase order line {line_id} not found", po_id=po.id, line_id=line_id)
            new_received = qty3(line.received_quantity) + qty
            if new_received > qty3(line.quantity):
                raise QuantityExceededError(
                    f"Cannot receive more than ordered quantity for line {line_id} "
                    f"(ordered={qty3(line.quantity)}, received={qty3(line.received_quantity)}, requested={qty})",
                    po_id=po.id,
                    line_id=line_id,
                )
            plan.append((line, qty))

        # ---------- APPLY ----------
        for line, qty in plan:
            line.received_quantity = qty3(line.received_quantity) + qty
            db.flush()
            apply_movement(
                db,
                company_id=po.company_id,
                branch_id=po.branch_id,
                item_id=line.item_id,
                quantity=qty,
                movement_type=MovementType.purchase,
                user_id=received_by,
                reference_type=ReferenceType.purchase_order,
                reference_id=po.id,
                notes=f"Received from PO {po.po_number}",
                purchase_price=line.unit_price,
                supplier_id=po.supplier_id,
            )

        # ---------- STATUS ----------
        all_lines = list(lines.values())
        all_received = all(qty3(ln.received_quantity) == qty3(ln.quantity) for ln in all_lines)
        some_received = any(qty3(ln.received_quantity) > 0 for ln in all_lines)

        target = po.status
        if all_received:
            target = POStatus.received
        elif some_received:
            target = POStatus.partially_received

        became_received = target == POStatus.received and po.status != POStatus.received
        if target != po.status:
            ensure_transition(po, target, by_receiving=True)
            po.status = target

        if delivery_date is not None:
            po.delivery_date = delivery_date
        elif became_received:
            po.delivery_date = utcnow().date()

        db.flush()
        return po

    po = run_atomic(db, _work, label="receive_items")
    logger.info(
        "Purchase order items received id=%s status=%s lines=%d user=%s",
        po.id, po.status.value, len(requested), received_by,
    )
    return po


# ---------- PAYMENTS ----------
def record_payment(
    db: Session,
    order_id: int,
    *,
    company_id: int,
    amount,
    payment_method_id: int,
    created_by: int,
    payment_date: date | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
) -> SupplierPayment:
    amount = money2(amount)
    if amount <= 0:
        raise InvalidInputError("Payment amount must be greater than 0")

    def _work() -> SupplierPayment:
        master_data.get_user(db, company_id=company_id, user_id=created_by)
        po = load_order(db, order_id, company_id=company_id, lock=True)
        if po.status == POStatus.cancelled:
            raise InvalidStateError("Cannot make payment for cancelled purchase order", po_id=po.id)
        master_data.get_payment_method(db, company_id=company_id, payment_method_id=payment_method_id)

        remaining = money2(D(po.grand_total) - D(po.paid_amount))
        if amount > remaining:
            raise QuantityExceededError(
                f"Payment amount ({amount}) exceeds remaining balance ({remaining})",
                po_id=po.id,
            )

        payment = SupplierPayment(
            po_id=po.id,
            supplier_id=po.supplier_id,
            company_id=po.company_id,
            branch_id=po.branch_id,
            amount=amount,
            payment_date=payment_date or utcnow().date(),
            payment_method_id=payment_method_id,
            reference_number=reference_number,
            notes=notes,
            created_by=created_by,
        )
        db.add(payment)

        po.paid_amount = money2(D(po.paid_amount) + amount)
        if po.status == POStatus.received and po.paid_amount >= money2(po.grand_total):
            ensure_transition(po, POStatus.completed)
            po.status = POStatus.completed

        db.flush()
        return payment

    payment = run_atomic(db, _work, label="record_payment")
    logger.info("Supplier payment recorded po=%s amount=%s user=%s", order_id, amount, created_by)
    return payment


# ---------- DELETE ----------
def delete_purchase_order(db: Session, order_id: int, *, company_id: int) -> None:
    def _work() -> None:
        po = load_order(db, order_id, company_id=company_id, lock=True)

        payments = db.execute(
            select(func.count(SupplierPayment.id)).where(SupplierPayment.po_id == po.id)
        ).scalar_one()
        if payments:
            raise InvalidStateError("Cannot delete purchase order with payments", po_id=po.id)

        if any(D(line.received_quantity) > 0 for line in _lock_lines(db, po.id)):
            raise InvalidStateError("Cannot delete purchase order with received items", po_id=po.id)

        db.delete(po)
        db.flush()

    run_atomic(db, _work, label="delete_purchase_order")
    logger.info("Purchase order deleted id=%s company=%s", order_id, company_id)


# ---------- READ SIDE ----------
def get_purchase_order(db: Session, order_id: int, *, company_id: int) -> PurchaseOrder:
    return load_order(db, order_id, company_id=company_id)


def list_purchase_orders(
    db: Session,
    *,
    company_id: int,
    branch_id: int | None = None,
    supplier_id: int | None = None,
    status: POStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[PurchaseOrder], int]:
    stmt = (
        select(PurchaseOrder)
        .join(Supplier, Supplier.id == PurchaseOrder.supplier_id)
        .where(PurchaseOrder.company_id == company_id)
    )
    if branch_id is not None:
        stmt = stmt.where(PurchaseOrder.branch_id == branch_id)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if start_date is not None:
        stmt = stmt.where(PurchaseOrder.order_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(PurchaseOrder.order_date <= end_date)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                PurchaseOrder.po_number.ilike(pattern),
                PurchaseOrder.invoice_number.ilike(pattern),
                Supplier.name.ilike(pattern),
            )
        )

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    page = max(page, 1)
    rows = (
        db.execute(
            stmt.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def _amount_totals(db: Session, stmt) -> tuple[int, Decimal, Decimal]:
    count = 0
    grand = ZERO
    paid = ZERO
    for grand_total, paid_amount in db.execute(stmt).all():
        count += 1
        grand += D(grand_total)
        paid += D(paid_amount)
    return count, money2(grand), money2(paid)


def get_supplier_outstanding(
    db: Session,
    supplier_id: int,
    *,
    company_id: int,
    branch_id: int | None = None,
) -> dict:
    master_data.get_supplier(db, company_id=company_id, supplier_id=supplier_id, require_active=False)

    stmt = (
        select(PurchaseOrder.grand_total, PurchaseOrder.paid_amount)
        .where(PurchaseOrder.company_id == company_id)
        .where(PurchaseOrder.supplier_id == supplier_id)
        .where(PurchaseOrder.status != POStatus.cancelled)
    )
    if branch_id is not None:
        stmt = stmt.where(PurchaseOrder.branch_id == branch_id)

    _, total_purchases, total_paid = _amount_totals(db, stmt)
    return {
        "supplier_id": supplier_id,
        "total_purchases": total_purchases,
        "total_paid": total_paid,
        "outstanding": money2(total_purchases - total_paid),
    }


def get_purchase_order_summary(db: Session, *, company_id: int, branch_id: int | None = None) -> dict:
    stmt = (
        select(PurchaseOrder.grand_total, PurchaseOrder.paid_amount)
        .where(PurchaseOrder.company_id == company_id)
        .where(PurchaseOrder.status != POStatus.cancelled)
    )
    if branch_id is not None:
        stmt = stmt.where(PurchaseOrder.branch_id == branch_id)

    count, total_amount, total_paid = _amount_totals(db, stmt)
    return {
        "total_count": count,
        "total_amount": total_amount,
        "total_paid": total_paid,
        "pending_amount": money2(total_amount - total_paid),
    }
