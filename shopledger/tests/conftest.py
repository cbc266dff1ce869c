from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import Session, sessionmaker

from shopledger.app.db.base import Base
from shopledger.app.db.models.models_v1 import (
    Branch,
    Company,
    Item,
    PaymentMethod,
    Supplier,
    User,
)
from shopledger.app.db.session import make_engine
from shopledger.services import procurement
from shopledger.services.master_data import ItemRef


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Throwaway database per test.

    File-backed (not :memory:) so that several threads, each with its own
    connection, see the same data.
    """
    eng = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def tenant(db_session):
    """
    Master data of one company (branch MAIN, one user, one supplier, two
    items, one payment method) plus a second company with its own branch
    MAIN, user, supplier and item, used for isolation checks. Only ids are
    exposed.
    """
    company = Company(name="Fixit Repairs")
    other = Company(name="Other Shop")
    db_session.add_all([company, other])
    db_session.flush()

    branch = Branch(company_id=company.id, code="MAIN", name="Main workshop")
    branch2 = Branch(company_id=company.id, code="EAST", name="East store")
    other_branch = Branch(company_id=other.id, code="MAIN", name="Other main")
    user = User(company_id=company.id, name="ADMIN")
    supplier = Supplier(company_id=company.id, name="Parts Wholesale Ltd")
    inactive_supplier = Supplier(company_id=company.id, name="Gone Parts", active=False)
    screen = Item(company_id=company.id, code="SCR-01", name="Screen", legacy_inventory_id=501)
    battery = Item(company_id=company.id, code="BAT-01", name="Battery")
    other_item = Item(company_id=other.id, code="SCR-01", name="Screen")
    other_user = User(company_id=other.id, name="OWNER")
    other_supplier = Supplier(company_id=other.id, name="Parts Wholesale Ltd")
    cash = PaymentMethod(company_id=company.id, name="CASH")
    db_session.add_all(
        [
            branch, branch2, other_branch, user, supplier, inactive_supplier,
            screen, battery, other_item, other_user, other_supplier, cash,
        ]
    )
    db_session.commit()

    return SimpleNamespace(
        company_id=company.id,
        other_company_id=other.id,
        branch_id=branch.id,
        branch2_id=branch2.id,
        other_branch_id=other_branch.id,
        user_id=user.id,
        supplier_id=supplier.id,
        inactive_supplier_id=inactive_supplier.id,
        item_id=screen.id,
        item2_id=battery.id,
        other_item_id=other_item.id,
        other_user_id=other_user.id,
        other_supplier_id=other_supplier.id,
        legacy_inventory_id=501,
        payment_method_id=cash.id,
    )


@pytest.fixture(scope="function")
def make_po(db_session, tenant):
    """Factory: PENDING purchase order on branch MAIN, default one line 10 x 25.00 at 2%."""

    def _make(lines=None, branch_id=None, **kwargs):
        if lines is None:
            lines = [
                procurement.LineInput(
                    item=ItemRef.item(tenant.item_id),
                    quantity=Decimal("10"),
                    unit_price=Decimal("25.00"),
                    tax_rate=Decimal("2"),
                )
            ]
        return procurement.create_purchase_order(
            db_session,
            company_id=tenant.company_id,
            supplier_id=tenant.supplier_id,
            branch_id=branch_id or tenant.branch_id,
            lines=lines,
            created_by=tenant.user_id,
            **kwargs,
        )

    return _make


@pytest.fixture(scope="function")
def receive(db_session, tenant):
    """Helper: receive ``qty`` on the first line of ``po``."""

    def _receive(po, qty, line=None):
        line = line or po.lines[0]
        return procurement.receive_items(
            db_session,
            po.id,
            company_id=tenant.company_id,
            items=[procurement.ReceiveInput(line_id=line.id, received_qty=Decimal(str(qty)))],
            received_by=tenant.user_id,
        )

    return _receive


@pytest.fixture(scope="function")
def pay(db_session, tenant):
    def _pay(po, amount):
        return procurement.record_payment(
            db_session,
            po.id,
            company_id=tenant.company_id,
            amount=Decimal(str(amount)),
            payment_method_id=tenant.payment_method_id,
            created_by=tenant.user_id,
        )

    return _pay
