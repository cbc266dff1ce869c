from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from shopledger.app.api.deps import get_company_id, get_db, get_user_id
from shopledger.app.core.config import settings
from shopledger.app.db.models.core_types import ReturnReason, ReturnStatus, ReturnType
from shopledger.app.schemas.purchase_return import PurchaseReturnPage, PurchaseReturnRead, RefundResult
from shopledger.services import returns

router = APIRouter(prefix="/purchase-returns")


# ---------- Schemas ----------
class ReturnCreate(BaseModel):
    line_id: int
    return_quantity: Decimal = Field(gt=0)
    return_reason: ReturnReason
    return_type: ReturnType
    notes: str | None = None


class ReturnReject(BaseModel):
    reason: str | None = None


class RefundCreate(BaseModel):
    payment_method_id: int | None = None
    reference_number: str | None = Field(default=None, max_length=100)
    notes: str | None = None


# ---------- Endpoints ----------
@router.get("", response_model=PurchaseReturnPage)
def list_returns(
    branch_id: int | None = None,
    status: ReturnStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    rows, total = returns.list_returns(
        db, company_id=company_id, branch_id=branch_id, status=status, page=page, limit=limit
    )
    return {"items": rows, "total": total, "page": page, "limit": limit}


@router.get("/{return_id}", response_model=PurchaseReturnRead)
def get_return(return_id: int, company_id: int = Depends(get_company_id), db: Session = Depends(get_db)):
    return returns.get_return(db, return_id, company_id=company_id)


@router.post("", response_model=PurchaseReturnRead, status_code=201)
def create_return(
    payload: ReturnCreate,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return returns.create_return(
        db,
        payload.line_id,
        company_id=company_id,
        return_quantity=payload.return_quantity,
        return_reason=payload.return_reason,
        return_type=payload.return_type,
        created_by=user_id,
        notes=payload.notes,
    )


@router.post("/{return_id}/confirm", response_model=PurchaseReturnRead)
def confirm_return(
    return_id: int,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return returns.confirm_return(db, return_id, company_id=company_id, confirmed_by=user_id)


@router.post("/{return_id}/reject", response_model=PurchaseReturnRead)
def reject_return(
    return_id: int,
    payload: ReturnReject,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    return returns.reject_return(db, return_id, company_id=company_id, reason=payload.reason)


@router.post("/{return_id}/refund", response_model=RefundResult)
def refund_return(
    return_id: int,
    payload: RefundCreate,
    company_id: int = Depends(get_company_id),
    user_id: int = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    ret, txn = returns.process_refund(
        db,
        return_id,
        company_id=company_id,
        processed_by=user_id,
        payment_method_id=payload.payment_method_id,
        reference_number=payload.reference_number,
        notes=payload.notes,
    )
    return {"purchase_return": ret, "refund": txn}
