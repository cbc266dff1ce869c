from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from shopledger.app.api.deps import get_company_id, get_db, get_user_id
from shopledger.app.core.config import settings
from shopledger.app.db.models.core_types import POStatus
from shopledger.app.schemas.purchase_order import (
    PurchaseOrderPage,
    PurchaseOrderRead,
    PurchaseOrderSummaryRead,
    SupplierPaymentRead,
)
from shopledger.app.schemas.purchase_return import PurchaseReturnRead
from shopledger.services import procurement, returns
from shopledger.services.master_data import ItemRef

router = APIRouter(prefix="/purchase-orders")


# ---------- Schemas ----------
class POLineCreate(BaseModel):
    item_id: int | None = None
    # older clients still send the pre-migration inventory key
    inventory_id: int | None = None
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)

    @model_validator(mode="after")
    def _one_item_reference(self):
        if (self.item_id is None) == (self.inventory_id is None):
            raise ValueError("Exactly one of item_id / inventory_id is required")
        return self

    def to_input(self) -> procurement.LineInput:
        ref = ItemRef.item(self.item_id) if self.item_id is not None else ItemRef.legacy(self.inventory_id)
        return procurement.LineInput(
            item=ref,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
        )


class POCreate(BaseModel):
    supplier_id: int
    branch_id: int
    order_date: date | None = None
    expected_delivery: date | None = None
    invoice_number: str | None = Field(default=None, max_length=100)
    invoice_date: date | None = None
    notes: str | None = None
    lines: list[POLineCreate] = Field(min_length=1)


class POUpdate(BaseModel):
    supplier_id: int | None = None
    order_date: date | None = None
    expected_delivery: date | None = None
    delivery_date: date | None = None
    invoice_number: str | None = Field(default=None, max_length=100)
    invoice_date: date | None = None
    notes: str | None = None
    status: POStatus | None = None
    lines: list[POLineCreate] | None = None


class POStatusUpdate(BaseModel):
    status: POStatus


class ReceiveLine(BaseModel):
    line_id: int
    received_qty: Decimal = Field(gt=0)


class ReceiveCreate(BaseModel):
    items: list[ReceiveLine] = Field(min_length=1)
    delivery_date: date | None = None


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method_id: int
    payment_date: date | None = None
    reference_number: str | None = Field(default=None, max_length=100)
    notes: str | None = None


# ---------- Endpoints ----------
@router.get("", response_model=PurchaseOrderPage)
def list_pos(
    branch_id: int | None = None,
    supplier_id: int | None = None,
    status: POStatus | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    rows, total = procurement.list_purchase_orders(
        db,
        company_id=company_id,
        branch_id=branch_id,
        supplier_id=supplier_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    return {"items": rows, "total": total, "page": page, "limit": limit}


@router.get("/summary", response_model=PurchaseOrderSummaryRead)
def po_summary(
    branch_id: int | None = None,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    return procurement.get_purchase_order_summary(db, company_id=company_id, branch_id=branch_id)


@router.get("/{po_id}", response_model=PurchaseOrderRead)
def get_po(po_id: int, company_id: int = Depends(get_company_id), db: Session = Depends(get_db)):
    return procurement.get_purchase_order(db, po_id, company_id=company_id)


@router.post("", response_model=PurchaseOrderRead, status_code=201)
def create_po(
    payload: POCreate,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return procurement.create_purchase_order(
        db,
        company_id=company_id,
        supplier_id=payload.supplier_id,
        branch_id=payload.branch_id,
        lines=[ln.to_input() for ln in payload.lines],
        created_by=user_id,
        order_date=payload.order_date,
        expected_delivery=payload.expected_delivery,
        invoice_number=payload.invoice_number,
        invoice_date=payload.invoice_date,
        notes=payload.notes,
    )


@router.patch("/{po_id}", response_model=PurchaseOrderRead)
def update_po(
    po_id: int,
    payload: POUpdate,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    patch = procurement.PurchaseOrderPatch(
        supplier_id=payload.supplier_id,
        order_date=payload.order_date,
        expected_delivery=payload.expected_delivery,
        delivery_date=payload.delivery_date,
        invoice_number=payload.invoice_number,
        invoice_date=payload.invoice_date,
        notes=payload.notes,
        status=payload.status,
        lines=[ln.to_input() for ln in payload.lines] if payload.lines is not None else None,
    )
    return procurement.update_purchase_order(db, po_id, company_id=company_id, patch=patch)


@router.patch("/{po_id}/status", response_model=PurchaseOrderRead)
def update_po_status(
    po_id: int,
    payload: POStatusUpdate,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    return procurement.update_status(db, po_id, company_id=company_id, status=payload.status)


@router.post("/{po_id}/receive", response_model=PurchaseOrderRead)
def receive_po(
    po_id: int,
    payload: ReceiveCreate,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return procurement.receive_items(
        db,
        po_id,
        company_id=company_id,
        items=[procurement.ReceiveInput(line_id=it.line_id, received_qty=it.received_qty) for it in payload.items],
        received_by=user_id,
        delivery_date=payload.delivery_date,
    )


@router.post("/{po_id}/payments", response_model=SupplierPaymentRead, status_code=201)
def pay_po(
    po_id: int,
    payload: PaymentCreate,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return procurement.record_payment(
        db,
        po_id,
        company_id=company_id,
        amount=payload.amount,
        payment_method_id=payload.payment_method_id,
        created_by=user_id,
        payment_date=payload.payment_date,
        reference_number=payload.reference_number,
        notes=payload.notes,
    )


@router.delete("/{po_id}", status_code=204)
def delete_po(po_id: int, company_id: int = Depends(get_company_id), db: Session = Depends(get_db)):
    procurement.delete_purchase_order(db, po_id, company_id=company_id)
    return Response(status_code=204)


@router.get("/{po_id}/returns", response_model=list[PurchaseReturnRead])
def list_po_returns(po_id: int, company_id: int = Depends(get_company_id), db: Session = Depends(get_db)):
    return returns.list_returns_for_order(db, po_id, company_id=company_id)
