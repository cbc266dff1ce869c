from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopledger.app.api.deps import get_company_id, get_db, get_user_id
from shopledger.app.core.config import settings
from shopledger.app.db.models.core_types import MovementType, ReferenceType
from shopledger.app.schemas.stock_movement import MovementSummaryRead, StockMovementPage, StockMovementRead
from shopledger.services import inventory

router = APIRouter(prefix="/stock-movements")


# ---------- Schemas ----------
class AdjustCreate(BaseModel):
    branch_id: int
    item_id: int
    movement_type: MovementType
    # signed for ADJUSTMENT, positive for every other type
    quantity: Decimal
    notes: str | None = Field(default=None, max_length=255)


# ---------- Endpoints ----------
@router.get("", response_model=StockMovementPage)
def movement_history(
    item_id: int | None = None,
    branch_id: int | None = None,
    movement_type: MovementType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    reference_type: ReferenceType | None = None,
    reference_id: int | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=settings.MAX_PAGE_SIZE),
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    rows, total = inventory.get_movement_history(
        db,
        company_id=company_id,
        item_id=item_id,
        branch_id=branch_id,
        movement_type=movement_type,
        start=start,
        end=end,
        reference_type=reference_type,
        reference_id=reference_id,
        page=page,
        limit=limit,
    )
    return {"items": rows, "total": total, "page": page, "limit": limit}


@router.get("/summary", response_model=list[MovementSummaryRead])
def movement_summary(
    branch_id: int | None = None,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    return inventory.get_movement_summary(db, company_id=company_id, branch_id=branch_id)


@router.post("/adjust", response_model=StockMovementRead, status_code=201)
def adjust_stock(
    payload: AdjustCreate,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return inventory.adjust_stock(
        db,
        company_id=company_id,
        branch_id=payload.branch_id,
        item_id=payload.item_id,
        quantity=payload.quantity,
        movement_type=payload.movement_type,
        user_id=user_id,
        notes=payload.notes,
    )
