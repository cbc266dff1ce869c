from __future__ import annotations

import logging

from sqlalchemy import select

from shopledger.app.core.logging import configure_logging
from shopledger.app.db.session import SessionLocal
from shopledger.app.db.models.models_v1 import Branch, Company, Item, PaymentMethod, Supplier, User

logger = logging.getLogger(__name__)


def run_seed():
    db = SessionLocal()
    try:
        # 1) Company + main branch
        company = db.scalar(select(Company).where(Company.name == "Demo Repair Shop"))
        if not company:
            company = Company(name="Demo Repair Shop", active=True)
            db.add(company)
            db.flush()

        branch = db.scalar(select(Branch).where(Branch.company_id == company.id).where(Branch.code == "MAIN"))
        if not branch:
            branch = Branch(company_id=company.id, code="MAIN", name="Main workshop", active=True)
            db.add(branch)

        # 2) Admin user
        user = db.scalar(select(User).where(User.company_id == company.id).where(User.name == "ADMIN"))
        if not user:
            db.add(User(company_id=company.id, name="ADMIN", active=True))

        # 3) A supplier, two items, cash
        if not db.scalar(select(Supplier).where(Supplier.company_id == company.id)):
            db.add(Supplier(company_id=company.id, name="Parts Wholesale Ltd", active=True))
        if not db.scalar(select(Item).where(Item.company_id == company.id)):
            db.add_all(
                [
                    Item(company_id=company.id, code="SCR-IP13", name="Screen iPhone 13", unit="PIECE"),
                    Item(company_id=company.id, code="BAT-IP13", name="Battery iPhone 13", unit="PIECE"),
                ]
            )
        if not db.scalar(select(PaymentMethod).where(PaymentMethod.company_id == company.id)):
            db.add(PaymentMethod(company_id=company.id, name="CASH", active=True))

        db.commit()
        logger.info("SEED OK: company=%s branch=MAIN user=ADMIN", company.id)
    finally:
        db.close()


if __name__ == "__main__":
    configure_logging()
    run_seed()
