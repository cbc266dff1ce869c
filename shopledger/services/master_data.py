"""
Tenant-scoped lookups of master data owned by other parts of the system
(branches, suppliers, items, users, payment methods).

Everything returned here has already been checked against ``company_id``;
an entity from another tenant is reported exactly like a missing one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from shopledger.app.db.models.models_v1 import Branch, Item, PaymentMethod, Supplier, User
from shopledger.services.errors import InvalidStateError, NotFoundError


@dataclass(frozen=True)
class ItemRef:
    """
    Reference to an item as sent by a client.

    ``kind`` is "item" for the current item catalogue, "legacy_inventory"
    for the pre-migration inventory key some clients still send. Resolved
    once by ``resolve_items``; only item ids flow further.
    """

    kind: str
    id: int

    ITEM = "item"
    LEGACY_INVENTORY = "legacy_inventory"

    @classmethod
    def item(cls, item_id: int) -> "ItemRef":
        return cls(cls.ITEM, int(item_id))

    @classmethod
    def legacy(cls, inventory_id: int) -> "ItemRef":
        return cls(cls.LEGACY_INVENTORY, int(inventory_id))


def get_branch(db: Session, *, company_id: int, branch_id: int) -> Branch:
    branch = db.execute(
        select(Branch).where(Branch.id == branch_id).where(Branch.company_id == company_id)
    ).scalar_one_or_none()
    if not branch:
        raise NotFoundError("Branch not found", branch_id=branch_id)
    return branch


def get_supplier(db: Session, *, company_id: int, supplier_id: int, require_active: bool = True) -> Supplier:
    supplier = db.execute(
        select(Supplier).where(Supplier.id == supplier_id).where(Supplier.company_id == company_id)
    ).scalar_one_or_none()
    if not supplier:
        raise NotFoundError("Supplier not found", supplier_id=supplier_id)
    if require_active and not supplier.active:
        raise InvalidStateError("Supplier is inactive", supplier_id=supplier_id)
    return supplier


def get_user(db: Session, *, company_id: int, user_id: int) -> User:
    user = db.execute(
        select(User).where(User.id == user_id).where(User.company_id == company_id)
    ).scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found", user_id=user_id)
    return user


def get_payment_method(db: Session, *, company_id: int, payment_method_id: int) -> PaymentMethod:
    method = db.execute(
        select(PaymentMethod)
        .where(PaymentMethod.id == payment_method_id)
        .where(PaymentMethod.company_id == company_id)
        .where(PaymentMethod.active.is_(True))
    ).scalar_one_or_none()
    if not method:
        raise NotFoundError("Payment method not found or inactive", payment_method_id=payment_method_id)
    return method


def resolve_items(db: Session, *, company_id: int, refs: Iterable[ItemRef]) -> list[Item]:
    """Resolve refs to active items of the tenant, in input order."""
    refs = list(refs)
    item_ids = {r.id for r in refs if r.kind == ItemRef.ITEM}
    legacy_ids = {r.id for r in refs if r.kind == ItemRef.LEGACY_INVENTORY}
    unknown = [r for r in refs if r.kind not in (ItemRef.ITEM, ItemRef.LEGACY_INVENTORY)]
    if unknown:
        raise NotFoundError(f"Unsupported item reference kind: {unknown[0].kind}")

    by_id: dict[int, Item] = {}
    by_legacy: dict[int, Item] = {}
    if item_ids:
        rows = db.execute(
            select(Item)
            .where(Item.company_id == company_id)
            .where(Item.active.is_(True))
            .where(Item.id.in_(item_ids))
        ).scalars()
        by_id = {int(i.id): i for i in rows}
    if legacy_ids:
        rows = db.execute(
            select(Item)
            .where(Item.company_id == company_id)
            .where(Item.active.is_(True))
            .where(Item.legacy_inventory_id.in_(legacy_ids))
        ).scalars()
        by_legacy = {int(i.legacy_inventory_id): i for i in rows}

    resolved: list[Item] = []
    missing: list[str] = []
    for ref in refs:
        item = (by_id if ref.kind == ItemRef.ITEM else by_legacy).get(ref.id)
        if item is None:
            missing.append(f"{ref.kind}:{ref.id}")
        else:
            resolved.append(item)

    if missing:
        raise NotFoundError(f"Items not found or inactive: {', '.join(missing)}", refs=missing)
    return resolved
