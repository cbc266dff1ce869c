from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from shopledger.app.api.deps import get_company_id, get_db
from shopledger.app.schemas.branch_stock import BranchStockRead
from shopledger.services import inventory

router = APIRouter(prefix="/stock")


@router.get(
    "",
    response_model=list[BranchStockRead],
)
def get_stock(
    branch_id: int | None = None,
    item_id: int | None = None,
    company_id: int = Depends(get_company_id),
    db: Session = Depends(get_db),
):
    """
    Stock (READ ONLY)
    - quantity is a cache of the movement ledger, never written here
    - use /stock-movements/adjust for manual corrections
    """
    return inventory.list_branch_stock(db, company_id=company_id, branch_id=branch_id, item_id=item_id)
