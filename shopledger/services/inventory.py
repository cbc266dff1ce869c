"""
Stock ledger.

BranchStock.quantity is a cache; the stock_movements table is the source of
truth. Every quantity change goes through ``apply_movement``, which writes
the cache and appends the movement in the caller's transaction:

    new_quantity = previous_quantity + signed quantity   (never < 0)

Properties:
- one movement per change, with before/after snapshots
- cache == SUM(movements.quantity) for every row (see ``replay_quantity``)
- row locked (FOR UPDATE) and versioned, so concurrent writers serialize
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from shopledger.app.db.models.models_v1 import BranchStock, StockMovement, utcnow
from shopledger.app.db.models.core_types import MovementType, ReferenceType
from shopledger.services import master_data
from shopledger.services.atomic import run_atomic
from shopledger.services.decimals import D, ZERO, money2, qty3
from shopledger.services.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    QuantityExceededError,
)

logger = logging.getLogger(__name__)

# Types a user may post by hand; purchases and returns have their own flows.
MANUAL_MOVEMENT_TYPES = {
    MovementType.adjustment,
    MovementType.damage,
    MovementType.service_use,
    MovementType.sale,
    MovementType.opening_stock,
}
DECREASING_TYPES = {
    MovementType.sale,
    MovementType.service_use,
    MovementType.damage,
}


def get_or_create_branch_stock(db: Session, *, company_id: int, branch_id: int, item_id: int) -> BranchStock:
    stock = (
        db.execute(
            select(BranchStock)
            .where(BranchStock.item_id == item_id)
            .where(BranchStock.branch_id == branch_id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )
    if stock:
        if stock.company_id != company_id:
            raise NotFoundError("Branch stock not found", branch_id=branch_id, item_id=item_id)
        return stock

    stock = BranchStock(
        company_id=company_id,
        branch_id=branch_id,
        item_id=item_id,
        quantity=ZERO,
    )
    db.add(stock)
    db.flush()
    return stock


def apply_movement(
    db: Session,
    *,
    company_id: int,
    branch_id: int,
    item_id: int,
    quantity,
    movement_type: MovementType,
    user_id: int,
    reference_type: ReferenceType | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
    purchase_price=None,
    supplier_id: int | None = None,
) -> StockMovement:
    """
    Apply one signed quantity change to (item, branch) and record it.

    Does not commit: the caller owns the unit of work.
    """
    delta = qty3(quantity)
    if delta == 0:
        raise QuantityExceededError("Movement quantity must be non-zero")

    stock = get_or_create_branch_stock(db, company_id=company_id, branch_id=branch_id, item_id=item_id)

    previous = qty3(stock.quantity)
    new = previous + delta
    if new < 0:
        raise InsufficientStockError(
            f"Insufficient stock (on_hand={previous}, requested={-delta})",
            branch_id=branch_id,
            item_id=item_id,
        )

    stock.quantity = new
    if movement_type == MovementType.purchase:
        if purchase_price is not None:
            stock.last_purchase_price = money2(purchase_price)
            stock.last_purchase_date = utcnow()
        if supplier_id is not None and stock.supplier_id is None:
            stock.supplier_id = supplier_id

    mv = StockMovement(
        branch_stock_id=stock.id,
        company_id=company_id,
        branch_id=branch_id,
        item_id=item_id,
        movement_type=movement_type,
        quantity=delta,
        previous_quantity=previous,
        new_quantity=new,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        user_id=user_id,
    )
    db.add(mv)
    db.flush()
    return mv


def adjust_stock(
    db: Session,
    *,
    company_id: int,
    branch_id: int,
    item_id: int,
    quantity,
    movement_type: MovementType,
    user_id: int,
    notes: str | None = None,
    reference_type: ReferenceType | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    """
    Manual stock change (count correction, damage, usage in a repair...).

    SALE / SERVICE_USE / DAMAGE take a positive quantity and remove it;
    OPENING_STOCK adds; ADJUSTMENT keeps the caller's sign.
    """
    if movement_type not in MANUAL_MOVEMENT_TYPES:
        raise InvalidStateError(f"{movement_type.value} movements cannot be posted manually")

    qty = qty3(quantity)
    if movement_type in DECREASING_TYPES or movement_type == MovementType.opening_stock:
        if qty <= 0:
            raise QuantityExceededError("Quantity must be greater than zero")
    signed = -qty if movement_type in DECREASING_TYPES else qty

    def _work() -> StockMovement:
        master_data.get_user(db, company_id=company_id, user_id=user_id)
        master_data.get_branch(db, company_id=company_id, branch_id=branch_id)
        master_data.resolve_items(db, company_id=company_id, refs=[master_data.ItemRef.item(item_id)])
        return apply_movement(
            db,
            company_id=company_id,
            branch_id=branch_id,
            item_id=item_id,
            quantity=signed,
            movement_type=movement_type,
            user_id=user_id,
            reference_type=reference_type or ReferenceType.manual,
            reference_id=reference_id,
            notes=notes,
        )

    mv = run_atomic(db, _work, label="adjust_stock")
    logger.info(
        "Stock adjusted branch=%s item=%s type=%s qty=%s new=%s",
        branch_id, item_id, movement_type.value, mv.quantity, mv.new_quantity,
    )
    return mv


# ---------- READ SIDE ----------
def get_movement_history(
    db: Session,
    *,
    company_id: int,
    item_id: int | None = None,
    branch_id: int | None = None,
    movement_type: MovementType | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    reference_type: ReferenceType | None = None,
    reference_id: int | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[StockMovement], int]:
    """Movements oldest first, plus the total count for the filter."""
    stmt = select(StockMovement).where(StockMovement.company_id == company_id)

    if item_id is not None:
        stmt = stmt.where(StockMovement.item_id == item_id)
    if branch_id is not None:
        stmt = stmt.where(StockMovement.branch_id == branch_id)
    if movement_type is not None:
        stmt = stmt.where(StockMovement.movement_type == movement_type)
    if start is not None:
        stmt = stmt.where(StockMovement.created_at >= start)
    if end is not None:
        stmt = stmt.where(StockMovement.created_at <= end)
    if reference_type is not None:
        stmt = stmt.where(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        stmt = stmt.where(StockMovement.reference_id == reference_id)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    page = max(page, 1)
    rows = (
        db.execute(
            stmt.order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def get_movement_summary(db: Session, *, company_id: int, branch_id: int | None = None) -> list[dict]:
    stmt = (
        select(
            StockMovement.movement_type,
            func.count(StockMovement.id).label("count"),
            func.coalesce(func.sum(StockMovement.quantity), 0).label("total_quantity"),
        )
        .where(StockMovement.company_id == company_id)
        .group_by(StockMovement.movement_type)
        .order_by(StockMovement.movement_type)
    )
    if branch_id is not None:
        stmt = stmt.where(StockMovement.branch_id == branch_id)

    return [
        {
            "movement_type": mt,
            "count": int(count),
            "total_quantity": qty3(total),
        }
        for mt, count, total in db.execute(stmt).all()
    ]


def list_branch_stock(
    db: Session,
    *,
    company_id: int,
    branch_id: int | None = None,
    item_id: int | None = None,
) -> list[BranchStock]:
    stmt = (
        select(BranchStock)
        .where(BranchStock.company_id == company_id)
        .order_by(BranchStock.branch_id, BranchStock.item_id)
    )
    if branch_id is not None:
        stmt = stmt.where(BranchStock.branch_id == branch_id)
    if item_id is not None:
        stmt = stmt.where(BranchStock.item_id == item_id)
    return list(db.execute(stmt).scalars().all())


def replay_quantity(db: Session, branch_stock_id: int) -> Decimal:
    """Rebuild the on-hand quantity from the ledger alone."""
    quantities = db.execute(
        select(StockMovement.quantity).where(StockMovement.branch_stock_id == branch_stock_id)
    ).scalars()
    return qty3(sum((D(q) for q in quantities), ZERO))


def verify_branch_stock(db: Session, branch_stock_id: int) -> bool:
    stock = db.get(BranchStock, branch_stock_id)
    if not stock:
        raise NotFoundError("Branch stock not found", branch_stock_id=branch_stock_id)
    return qty3(stock.quantity) == replay_quantity(db, branch_stock_id)
