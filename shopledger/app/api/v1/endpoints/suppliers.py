from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopledger.app.api.deps import get_company_id, get_db
from shopledger.app.schemas.purchase_order import SupplierOutstandingRead
from shopledger.services import procurement

router = APIRouter(prefix="/suppliers")


@router.get("/{supplier_id}/outstanding", response_model=SupplierOutstandingRead)
def supplier_outstanding(
    supplier_id: int,
    branch_id: int | None = None,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    return procurement.get_supplier_outstanding(db, supplier_id, company_id=company_id, branch_id=branch_id)
