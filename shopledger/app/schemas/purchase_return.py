from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from shopledger.app.db.models.core_types import ReturnReason, ReturnStatus, ReturnType


class PurchaseReturnRead(BaseModel):
    id: int
    line_id: int
    branch_id: int
    return_quantity: Decimal
    return_reason: ReturnReason
    return_type: ReturnType
    status: ReturnStatus
    refund_amount: Decimal
    stock_reversed: bool
    refund_processed: bool
    replacement_order_id: int | None = None
    notes: str | None = None
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True


class PurchaseReturnPage(BaseModel):
    items: list[PurchaseReturnRead]
    total: int
    page: int
    limit: int


class RefundTransactionRead(BaseModel):
    id: int
    return_id: int
    amount: Decimal
    refund_date: datetime
    payment_method_id: int | None = None
    reference_number: str | None = None

    class Config:
        from_attributes = True


class RefundResult(BaseModel):
    purchase_return: PurchaseReturnRead
    refund: RefundTransactionRead
