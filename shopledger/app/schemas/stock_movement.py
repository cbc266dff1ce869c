from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from shopledger.app.db.models.core_types import MovementType, ReferenceType


class StockMovementRead(BaseModel):
    id: int
    branch_stock_id: int
    branch_id: int
    item_id: int
    movement_type: MovementType
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    reference_type: ReferenceType | None = None
    reference_id: int | None = None
    notes: str | None = None
    user_id: int
    created_at: datetime

    class Config:
        from_attributes = True


class MovementSummaryRead(BaseModel):
    movement_type: MovementType
    count: int
    total_quantity: Decimal


class StockMovementPage(BaseModel):
    items: list[StockMovementRead]
    total: int
    page: int
    limit: int
