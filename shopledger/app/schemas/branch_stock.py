from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class BranchStockRead(BaseModel):
    id: int
    branch_id: int
    item_id: int

    quantity: Decimal  # cache of SUM(stock_movements.quantity)
    last_purchase_price: Decimal | None = None
    last_purchase_date: datetime | None = None
    supplier_id: int | None = None
    updated_at: datetime

    class Config:
        from_attributes = True
