"""
Purchase returns and supplier refunds.

Return lifecycle: PENDING -> CONFIRMED | REJECTED (both terminal).
Confirming takes the goods out of branch stock (RETURN movement) and, for a
REPLACEMENT return, opens a new purchase order for the same item. A refund
is a separate step, allowed once per confirmed REFUND return.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from shopledger.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseReturn,
    RefundTransaction,
)
from shopledger.app.db.models.core_types import (
    MovementType,
    POStatus,
    ReferenceType,
    ReturnReason,
    ReturnStatus,
    ReturnType,
)
from shopledger.services import master_data
from shopledger.services.atomic import run_atomic
from shopledger.services.decimals import D, ZERO, money2, qty3
from shopledger.services.errors import (
    AlreadyProcessedError,
    InsufficientPaidError,
    InvalidStateError,
    NotFoundError,
    QuantityExceededError,
)
from shopledger.services.inventory import apply_movement
from shopledger.services.procurement import load_order, open_purchase_order

logger = logging.getLogger(__name__)

RETURNABLE_STATUSES = {POStatus.received, POStatus.partially_received, POStatus.completed}


def _load_line(db: Session, line_id: int, *, company_id: int, lock: bool = False) -> PurchaseOrderLine:
    stmt = (
        select(PurchaseOrderLine)
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderLine.po_id)
        .where(PurchaseOrderLine.id == line_id)
        .where(PurchaseOrder.company_id == company_id)
    )
    if lock:
        stmt = stmt.with_for_update()
    line = db.execute(stmt).scalar_one_or_none()
    if not line:
        raise NotFoundError("Purchase order line not found", line_id=line_id)
    return line


def _load_return(db: Session, return_id: int, *, company_id: int, lock: bool = False) -> PurchaseReturn:
    stmt = (
        select(PurchaseReturn)
        .where(PurchaseReturn.id == return_id)
        .where(PurchaseReturn.company_id == company_id)
    )
    if lock:
        stmt = stmt.with_for_update()
    ret = db.execute(stmt).scalar_one_or_none()
    if not ret:
        raise NotFoundError("Purchase return not found", return_id=return_id)
    return ret


def already_returned(db: Session, line_id: int) -> Decimal:
    """Sum of return quantities still counting against the line (rejected ones do not)."""
    total = db.execute(
        select(func.coalesce(func.sum(PurchaseReturn.return_quantity), 0))
        .where(PurchaseReturn.line_id == line_id)
        .where(PurchaseReturn.status != ReturnStatus.rejected)
    ).scalar_one()
    return qty3(total)


def _ensure_pending(ret: PurchaseReturn) -> None:
    if ret.status != ReturnStatus.pending:
        raise AlreadyProcessedError(
            f"Return has already been {ret.status.value.lower()}",
            return_id=ret.id,
            status=ret.status.value,
        )


# ---------- CREATE ----------
def create_return(
    db: Session,
    line_id: int,
    *,
    company_id: int,
    return_quantity,
    return_reason: ReturnReason,
    return_type: ReturnType,
    created_by: int,
    notes: str | None = None,
) -> PurchaseReturn:
    qty = qty3(return_quantity)
    if qty <= 0:
        raise QuantityExceededError("Return quantity must be greater than 0", line_id=line_id)

    def _work() -> PurchaseReturn:
        master_data.get_user(db, company_id=company_id, user_id=created_by)
        line = _load_line(db, line_id, company_id=company_id, lock=True)
        po = load_order(db, line.po_id, company_id=company_id)

        if po.status not in RETURNABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot return items of {po.status.value.lower()} purchase order",
                po_id=po.id,
            )
        received = qty3(line.received_quantity)
        if received <= 0:
            raise InvalidStateError("No items have been received on this line", line_id=line.id)

        available = received - already_returned(db, line.id)
        if qty > available:
            raise QuantityExceededError(
                f"Cannot return more than available quantity ({available})",
                line_id=line.id,
            )

        refund_amount = money2(D(line.unit_price) * qty)
        if return_type == ReturnType.refund and refund_amount > money2(po.paid_amount):
            raise InsufficientPaidError(
                f"Refund amount ({refund_amount}) exceeds paid amount ({money2(po.paid_amount)})",
                po_id=po.id,
            )

        ret = PurchaseReturn(
            line_id=line.id,
            company_id=po.company_id,
            branch_id=po.branch_id,
            return_quantity=qty,
            return_reason=return_reason,
            return_type=return_type,
            status=ReturnStatus.pending,
            refund_amount=refund_amount,
            stock_reversed=False,
            refund_processed=False,
            notes=notes,
            created_by=created_by,
        )
        db.add(ret)
        db.flush()
        return ret

    ret = run_atomic(db, _work, label="create_return")
    logger.info(
        "Purchase return created id=%s line=%s qty=%s type=%s user=%s",
        ret.id, line_id, qty, return_type.value, created_by,
    )
    return ret


# ---------- CONFIRM / REJECT ----------
def confirm_return(db: Session, return_id: int, *, company_id: int, confirmed_by: int) -> PurchaseReturn:
    """
    Take the returned goods out of stock and close the return.

    One unit of work: RETURN movement, optional replacement order, line
    returned quantity and the status change commit together or not at all.
    """

    def _work() -> PurchaseReturn:
        master_data.get_user(db, company_id=company_id, user_id=confirmed_by)
        ret = _load_return(db, return_id, company_id=company_id, lock=True)
        _ensure_pending(ret)

        line = _load_line(db, ret.line_id, company_id=company_id, lock=True)
        po = load_order(db, line.po_id, company_id=company_id)
        qty = qty3(ret.return_quantity)

        new_returned = qty3(line.returned_quantity) + qty
        if new_returned > qty3(line.received_quantity):
            raise QuantityExceededError(
                "Returned quantity would exceed received quantity",
                line_id=line.id,
            )

        apply_movement(
            db,
            company_id=ret.company_id,
            branch_id=ret.branch_id,
            item_id=line.item_id,
            quantity=-qty,
            movement_type=MovementType.ret,
            user_id=confirmed_by,
            reference_type=ReferenceType.purchase_return,
            reference_id=ret.id,
            notes=f"Return to supplier ({ret.return_reason.value}) from PO {po.po_number}",
        )

        if ret.return_type == ReturnType.replacement:
            branch = master_data.get_branch(db, company_id=company_id, branch_id=po.branch_id)
            supplier = master_data.get_supplier(
                db, company_id=company_id, supplier_id=po.supplier_id, require_active=False
            )
            replacement = open_purchase_order(
                db,
                company_id=company_id,
                branch=branch,
                supplier=supplier,
                lines=[
                    PurchaseOrderLine(
                        item_id=line.item_id,
                        quantity=qty,
                        unit_price=money2(line.unit_price),
                        tax_rate=money2(line.tax_rate),
                        received_quantity=ZERO,
                        returned_quantity=ZERO,
                    )
                ],
                created_by=confirmed_by,
                notes=f"Replacement for return #{ret.id} of PO {po.po_number}",
            )
            ret.replacement_order_id = replacement.id

        line.returned_quantity = new_returned
        ret.status = ReturnStatus.confirmed
        ret.stock_reversed = True
        db.flush()
        return ret

    ret = run_atomic(db, _work, label="confirm_return")
    logger.info(
        "Purchase return confirmed id=%s replacement_po=%s user=%s",
        ret.id, ret.replacement_order_id, confirmed_by,
    )
    return ret


def reject_return(db: Session, return_id: int, *, company_id: int, reason: str | None = None) -> PurchaseReturn:
    def _work() -> PurchaseReturn:
        ret = _load_return(db, return_id, company_id=company_id, lock=True)
        _ensure_pending(ret)

        ret.status = ReturnStatus.rejected
        if reason:
            note = f"Rejection Reason: {reason}"
            ret.notes = f"{ret.notes}\n{note}" if ret.notes else note
        db.flush()
        return ret

    ret = run_atomic(db, _work, label="reject_return")
    logger.info("Purchase return rejected id=%s", ret.id)
    return ret


# ---------- REFUND ----------
def process_refund(
    db: Session,
    return_id: int,
    *,
    company_id: int,
    processed_by: int,
    payment_method_id: int | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
) -> tuple[PurchaseReturn, RefundTransaction]:
    def _work() -> tuple[PurchaseReturn, RefundTransaction]:
        master_data.get_user(db, company_id=company_id, user_id=processed_by)
        ret = _load_return(db, return_id, company_id=company_id, lock=True)
        if ret.status != ReturnStatus.confirmed:
            raise InvalidStateError("Return must be confirmed before refund", return_id=ret.id)
        if ret.return_type != ReturnType.refund:
            raise InvalidStateError("Return is not a refund type", return_id=ret.id)
        if ret.refund_processed:
            raise AlreadyProcessedError("Refund has already been processed", return_id=ret.id)
        if payment_method_id is not None:
            master_data.get_payment_method(db, company_id=company_id, payment_method_id=payment_method_id)

        line = _load_line(db, ret.line_id, company_id=company_id)
        po = load_order(db, line.po_id, company_id=company_id, lock=True)

        amount = money2(ret.refund_amount)
        if amount > money2(po.paid_amount):
            raise InsufficientPaidError(
                f"Refund amount ({amount}) exceeds paid amount ({money2(po.paid_amount)})",
                po_id=po.id,
                return_id=ret.id,
            )

        txn = RefundTransaction(
            return_id=ret.id,
            company_id=ret.company_id,
            branch_id=ret.branch_id,
            amount=amount,
            payment_method_id=payment_method_id,
            reference_number=reference_number,
            notes=notes,
            processed_by=processed_by,
        )
        db.add(txn)

        po.paid_amount = money2(D(po.paid_amount) - amount)
        ret.refund_processed = True
        db.flush()
        return ret, txn

    ret, txn = run_atomic(db, _work, label="process_refund")
    logger.info("Refund processed return=%s amount=%s user=%s", ret.id, txn.amount, processed_by)
    return ret, txn


# ---------- READ SIDE ----------
def get_return(db: Session, return_id: int, *, company_id: int) -> PurchaseReturn:
    return _load_return(db, return_id, company_id=company_id)


def list_returns(
    db: Session,
    *,
    company_id: int,
    branch_id: int | None = None,
    status: ReturnStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[PurchaseReturn], int]:
    stmt = select(PurchaseReturn).where(PurchaseReturn.company_id == company_id)
    if branch_id is not None:
        stmt = stmt.where(PurchaseReturn.branch_id == branch_id)
    if status is not None:
        stmt = stmt.where(PurchaseReturn.status == status)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    page = max(page, 1)
    rows = (
        db.execute(
            stmt.order_by(PurchaseReturn.created_at.desc(), PurchaseReturn.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def list_returns_for_order(db: Session, order_id: int, *, company_id: int) -> list[PurchaseReturn]:
    load_order(db, order_id, company_id=company_id)
    return list(
        db.execute(
            select(PurchaseReturn)
            .join(PurchaseOrderLine, PurchaseOrderLine.id == PurchaseReturn.line_id)
            .where(PurchaseOrderLine.po_id == order_id)
            .where(PurchaseReturn.company_id == company_id)
            .order_by(PurchaseReturn.id)
        )
        .scalars()
        .all()
    )
