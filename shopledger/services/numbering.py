from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from shopledger.app.db.models.models_v1 import Branch, DocumentSequence

PO_KEY = "PO"


def next_sequence(db: Session, *, branch_id: int, key: str) -> int:
    """
    Take the next value of the (branch, key) counter.

    Row is locked (FOR UPDATE) and versioned: two writers can never leave
    with the same value. The very first insert for a branch can collide on
    the unique key; the caller's unit of work is retried in that case.
    """
    row = db.execute(
        select(DocumentSequence)
        .where(DocumentSequence.branch_id == branch_id)
        .where(DocumentSequence.key == key)
        .with_for_update()
    ).scalar_one_or_none()

    if not row:
        row = DocumentSequence(branch_id=branch_id, key=key, next_value=1)
        db.add(row)
        db.flush()

    value = row.next_value
    row.next_value = value + 1
    db.flush()
    return value


def generate_po_number(db: Session, branch: Branch) -> str:
    """Pattern: PO-{branchCode}-{NNNNN}"""
    seq = next_sequence(db, branch_id=branch.id, key=PO_KEY)
    return f"PO-{branch.code}-{seq:05d}"
