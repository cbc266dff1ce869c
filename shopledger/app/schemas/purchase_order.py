from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from shopledger.app.db.models.core_types import POStatus


class PurchaseOrderLineRead(BaseModel):
    id: int
    item_id: int
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    line_total: Decimal
    received_quantity: Decimal
    returned_quantity: Decimal

    class Config:
        from_attributes = True


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    branch_id: int
    supplier_id: int
    status: POStatus
    order_date: date
    expected_delivery: date | None = None
    delivery_date: date | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    notes: str | None = None
    total_amount: Decimal
    tax_amount: Decimal
    grand_total: Decimal
    paid_amount: Decimal
    created_by: int
    created_at: datetime
    lines: list[PurchaseOrderLineRead] = []

    class Config:
        from_attributes = True


class PurchaseOrderPage(BaseModel):
    items: list[PurchaseOrderRead]
    total: int
    page: int
    limit: int


class SupplierPaymentRead(BaseModel):
    id: int
    po_id: int
    amount: Decimal
    payment_date: date
    payment_method_id: int
    reference_number: str | None = None

    class Config:
        from_attributes = True


class PurchaseOrderSummaryRead(BaseModel):
    total_count: int
    total_amount: Decimal
    total_paid: Decimal
    pending_amount: Decimal


class SupplierOutstandingRead(BaseModel):
    supplier_id: int
    total_purchases: Decimal
    total_paid: Decimal
    outstanding: Decimal
