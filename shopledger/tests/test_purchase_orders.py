from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from shopledger.app.db.models.core_types import MovementType, POStatus, ReferenceType
from shopledger.app.db.models.models_v1 import BranchStock, PurchaseOrder, StockMovement
from shopledger.services import inventory, procurement
from shopledger.services.errors import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    QuantityExceededError,
)
from shopledger.services.master_data import ItemRef


def _line(item_id, qty="10", price="25.00", rate="0"):
    return procurement.LineInput(
        item=ItemRef.item(item_id),
        quantity=Decimal(qty),
        unit_price=Decimal(price),
        tax_rate=Decimal(rate),
    )


def _movement_count(db_session) -> int:
    return db_session.execute(select(func.count(StockMovement.id))).scalar_one()


# ---------- CREATE ----------
def test_create_computes_totals_and_number(make_po):
    """
    GIVEN one line 10 x 25.00 at 2% tax on branch MAIN
    THEN total 250.00, tax 5.00, grand total 255.00, PENDING, PO-MAIN-00001
    """
    po = make_po()

    assert po.po_number == "PO-MAIN-00001"
    assert po.status == POStatus.pending
    assert po.total_amount == Decimal("250.00")
    assert po.tax_amount == Decimal("5.00")
    assert po.grand_total == Decimal("255.00")
    assert po.paid_amount == Decimal("0")

    line = po.lines[0]
    assert line.tax_amount == Decimal("5.00")
    assert line.line_total == Decimal("255.00")
    assert line.received_quantity == 0
    assert line.returned_quantity == 0


def test_po_numbers_are_sequential_per_branch(make_po, tenant):
    first = make_po()
    second = make_po()
    east = make_po(branch_id=tenant.branch2_id)

    assert first.po_number == "PO-MAIN-00001"
    assert second.po_number == "PO-MAIN-00002"
    assert east.po_number == "PO-EAST-00001"


def test_same_branch_code_in_two_companies_numbers_independently(db_session, make_po, tenant):
    """
    GIVEN two companies that both have a branch coded MAIN
    WHEN each creates a purchase order on its own MAIN
    THEN both orders are PO-MAIN-00001
    """
    ours = make_po()
    theirs = procurement.create_purchase_order(
        db_session,
        company_id=tenant.other_company_id,
        supplier_id=tenant.other_supplier_id,
        branch_id=tenant.other_branch_id,
        lines=[_line(tenant.other_item_id)],
        created_by=tenant.other_user_id,
    )

    assert ours.po_number == "PO-MAIN-00001"
    assert theirs.po_number == "PO-MAIN-00001"
    assert theirs.company_id == tenant.other_company_id

    again = make_po()
    assert again.po_number == "PO-MAIN-00002"


def test_create_with_multiple_lines_sums_totals(make_po, tenant):
    po = make_po(
        lines=[
            _line(tenant.item_id, qty="2", price="100.00", rate="10"),
            _line(tenant.item2_id, qty="3", price="15.50", rate="0"),
        ]
    )

    assert po.total_amount == Decimal("246.50")
    assert po.tax_amount == Decimal("20.00")
    assert po.grand_total == Decimal("266.50")
    assert len(po.lines) == 2


def test_legacy_inventory_reference_resolves_to_item(make_po, tenant):
    po = make_po(
        lines=[
            procurement.LineInput(
                item=ItemRef.legacy(tenant.legacy_inventory_id),
                quantity=Decimal("1"),
                unit_price=Decimal("80.00"),
            )
        ]
    )

    assert po.lines[0].item_id == tenant.item_id


@pytest.mark.parametrize(
    "lines",
    [
        [],
        [procurement.LineInput(item=ItemRef.item(1), quantity=Decimal("0"), unit_price=Decimal("1"))],
        [procurement.LineInput(item=ItemRef.item(1), quantity=Decimal("1"), unit_price=Decimal("-1"))],
        [
            procurement.LineInput(
                item=ItemRef.item(1), quantity=Decimal("1"), unit_price=Decimal("1"), tax_rate=Decimal("101")
            )
        ],
    ],
)
def test_create_rejects_invalid_lines(db_session, tenant, lines):
    with pytest.raises(InvalidInputError):
        procurement.create_purchase_order(
            db_session,
            company_id=tenant.company_id,
            supplier_id=tenant.supplier_id,
            branch_id=tenant.branch_id,
            lines=lines,
            created_by=tenant.user_id,
        )

    assert db_session.execute(select(func.count(PurchaseOrder.id))).scalar_one() == 0


def test_create_rejects_unknown_or_foreign_item(make_po, tenant):
    with pytest.raises(NotFoundError):
        make_po(lines=[_line(999_999)])

    with pytest.raises(NotFoundError):
        make_po(lines=[_line(tenant.other_item_id)])


def test_create_rejects_bad_supplier_and_branch(db_session, tenant):
    kwargs = dict(
        company_id=tenant.company_id,
        lines=[_line(tenant.item_id)],
        created_by=tenant.user_id,
    )

    with pytest.raises(NotFoundError):
        procurement.create_purchase_order(db_session, supplier_id=999_999, branch_id=tenant.branch_id, **kwargs)
    with pytest.raises(InvalidStateError):
        procurement.create_purchase_order(
            db_session, supplier_id=tenant.inactive_supplier_id, branch_id=tenant.branch_id, **kwargs
        )
    with pytest.raises(NotFoundError):
        procurement.create_purchase_order(
            db_session, supplier_id=tenant.supplier_id, branch_id=tenant.other_branch_id, **kwargs
        )


@pytest.mark.parametrize("user", ["unknown", "foreign"])
def test_create_rejects_user_outside_company(db_session, tenant, user):
    """
    GIVEN a creator id that is unknown or belongs to another company
    THEN NotFoundError and no order is written
    """
    created_by = 999_999 if user == "unknown" else tenant.other_user_id

    with pytest.raises(NotFoundError):
        procurement.create_purchase_order(
            db_session,
            company_id=tenant.company_id,
            supplier_id=tenant.supplier_id,
            branch_id=tenant.branch_id,
            lines=[_line(tenant.item_id)],
            created_by=created_by,
        )

    assert db_session.execute(select(func.count(PurchaseOrder.id))).scalar_one() == 0


def test_purchase_order_is_invisible_to_other_tenant(db_session, make_po, tenant):
    po = make_po()

    with pytest.raises(NotFoundError):
        procurement.get_purchase_order(db_session, po.id, company_id=tenant.other_company_id)


# ---------- RECEIVE ----------
def test_partial_then_full_receive(db_session, make_po, receive, tenant):
    """
    GIVEN a PO line of 10
    - receive 4  -> PARTIALLY_RECEIVED, stock 4, one PURCHASE movement 0 -> 4
    - receive 6  -> RECEIVED, stock 10, delivery date set
    """
    po = make_po()

    po = receive(po, 4)
    assert po.status == POStatus.partially_received
    assert po.lines[0].received_quantity == Decimal("4")
    assert po.delivery_date is None

    stock = inventory.list_branch_stock(db_session, company_id=tenant.company_id, item_id=tenant.item_id)
    assert len(stock) == 1
    assert stock[0].quantity == Decimal("4")
    assert stock[0].last_purchase_price == Decimal("25.00")
    assert stock[0].last_purchase_date is not None
    assert stock[0].supplier_id == tenant.supplier_id

    movements, total = inventory.get_movement_history(db_session, company_id=tenant.company_id)
    assert total == 1
    mv = movements[0]
    assert mv.movement_type == MovementType.purchase
    assert mv.quantity == Decimal("4")
    assert mv.previous_quantity == Decimal("0")
    assert mv.new_quantity == Decimal("4")
    assert mv.reference_type == ReferenceType.purchase_order
    assert mv.reference_id == po.id
    assert mv.user_id == tenant.user_id

    po = receive(po, 6)
    assert po.status == POStatus.received
    assert po.lines[0].received_quantity == Decimal("10")
    assert po.delivery_date is not None

    stock = inventory.list_branch_stock(db_session, company_id=tenant.company_id, item_id=tenant.item_id)
    assert stock[0].quantity == Decimal("10")
    assert inventory.verify_branch_stock(db_session, stock[0].id)


def test_over_receive_is_refused_without_any_change(db_session, make_po, receive, tenant):
    po = make_po()
    receive(po, 7)

    with pytest.raises(QuantityExceededError):
        receive(po, 4)

    db_session.expire_all()
    po = procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id)
    assert po.status == POStatus.partially_received
    assert po.lines[0].received_quantity == Decimal("7")
    assert _movement_count(db_session) == 1
    stock = inventory.list_branch_stock(db_session, company_id=tenant.company_id)
    assert stock[0].quantity == Decimal("7")


def test_receive_is_all_or_nothing_across_lines(db_session, make_po, tenant):
    po = make_po(lines=[_line(tenant.item_id, qty="5"), _line(tenant.item2_id, qty="2")])
    first, second = po.lines

    with pytest.raises(QuantityExceededError):
        procurement.receive_items(
            db_session,
            po.id,
            company_id=tenant.company_id,
            items=[
                procurement.ReceiveInput(line_id=first.id, received_qty=Decimal("5")),
                procurement.ReceiveInput(line_id=second.id, received_qty=Decimal("3")),
            ],
            received_by=tenant.user_id,
        )

    db_session.expire_all()
    assert _movement_count(db_session) == 0
    assert db_session.execute(select(func.count(BranchStock.id))).scalar_one() == 0
    po = procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id)
    assert [ln.received_quantity for ln in po.lines] == [Decimal("0"), Decimal("0")]
    assert po.status == POStatus.pending


def test_receive_unknown_line_or_bad_quantity(db_session, make_po, tenant):
    po = make_po()

    with pytest.raises(NotFoundError):
        procurement.receive_items(
            db_session,
            po.id,
            company_id=tenant.company_id,
            items=[procurement.ReceiveInput(line_id=999_999, received_qty=Decimal("1"))],
            received_by=tenant.user_id,
        )
    with pytest.raises(InvalidInputError):
        procurement.receive_items(
            db_session,
            po.id,
            company_id=tenant.company_id,
            items=[procurement.ReceiveInput(line_id=po.lines[0].id, received_qty=Decimal("0"))],
            received_by=tenant.user_id,
        )


def test_receive_by_user_of_other_company_is_refused(db_session, make_po, tenant):
    """
    GIVEN a PENDING order
    WHEN a user of another company receives on it
    THEN NotFoundError, nothing received and no movement
    """
    po = make_po()

    with pytest.raises(NotFoundError):
        procurement.receive_items(
            db_session,
            po.id,
            company_id=tenant.company_id,
            items=[procurement.ReceiveInput(line_id=po.lines[0].id, received_qty=Decimal("1"))],
            received_by=tenant.other_user_id,
        )

    db_session.expire_all()
    assert _movement_count(db_session) == 0
    po = procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id)
    assert po.lines[0].received_quantity == Decimal("0")
    assert po.status == POStatus.pending


def test_receive_on_cancelled_order_is_refused(db_session, make_po, receive, tenant):
    po = make_po()
    procurement.update_status(db_session, po.id, company_id=tenant.company_id, status=POStatus.cancelled)

    with pytest.raises(InvalidStateError):
        receive(po, 1)

    assert _movement_count(db_session) == 0


def test_receive_uses_given_delivery_date(db_session, make_po, tenant):
    po = make_po()

    po = procurement.receive_items(
        db_session,
        po.id,
        company_id=tenant.company_id,
        items=[procurement.ReceiveInput(line_id=po.lines[0].id, received_qty=Decimal("10"))],
        received_by=tenant.user_id,
        delivery_date=date(2026, 3, 1),
    )

    assert po.status == POStatus.received
    assert po.delivery_date == date(2026, 3, 1)


# ---------- UPDATE / STATUS ----------
def test_update_fields_and_replace_lines(db_session, make_po, tenant):
    po = make_po()

    po = procurement.update_purchase_order(
        db_session,
        po.id,
        company_id=tenant.company_id,
        patch=procurement.PurchaseOrderPatch(
            invoice_number="INV-77",
            notes="call before delivery",
            lines=[_line(tenant.item2_id, qty="4", price="12.50", rate="0")],
        ),
    )

    assert po.invoice_number == "INV-77"
    assert po.notes == "call before delivery"
    assert len(po.lines) == 1
    assert po.lines[0].item_id == tenant.item2_id
    assert po.total_amount == Decimal("50.00")
    assert po.tax_amount == Decimal("0.00")
    assert po.grand_total == Decimal("50.00")


def test_replace_lines_after_receiving_is_refused(db_session, make_po, receive, tenant):
    po = make_po()
    receive(po, 1)

    with pytest.raises(InvalidStateError):
        procurement.update_purchase_order(
            db_session,
            po.id,
            company_id=tenant.company_id,
            patch=procurement.PurchaseOrderPatch(lines=[_line(tenant.item2_id)]),
        )


def test_terminal_orders_cannot_be_modified(db_session, make_po, tenant):
    po = make_po()
    procurement.update_status(db_session, po.id, company_id=tenant.company_id, status=POStatus.cancelled)

    with pytest.raises(InvalidStateError):
        procurement.update_purchase_order(
            db_session,
            po.id,
            company_id=tenant.company_id,
            patch=procurement.PurchaseOrderPatch(notes="too late"),
        )
    with pytest.raises(InvalidStateError):
        procurement.update_status(db_session, po.id, company_id=tenant.company_id, status=POStatus.pending)


def test_every_status_is_in_transition_table():
    """
    GIVEN the PO status enum
    THEN each member has a row in the transition table and every status but
      PENDING, the creation status, is the target of some transition
    """
    assert set(procurement.ALLOWED_TRANSITIONS) == set(POStatus)
    assert "DRAFT" not in {s.value for s in POStatus}

    targets = set().union(*procurement.ALLOWED_TRANSITIONS.values())
    assert set(POStatus) - targets == {POStatus.pending}


@pytest.mark.parametrize("target", [POStatus.received, POStatus.partially_received, POStatus.completed])
def test_status_cannot_jump_by_hand(db_session, make_po, tenant, target):
    po = make_po()

    with pytest.raises(InvalidStateError):
        procurement.update_status(db_session, po.id, company_id=tenant.company_id, status=target)

    db_session.expire_all()
    assert procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id).status == POStatus.pending


def test_received_order_can_be_completed(db_session, make_po, receive, tenant):
    po = make_po()
    receive(po, 10)

    po = procurement.update_status(db_session, po.id, company_id=tenant.company_id, status=POStatus.completed)
    assert po.status == POStatus.completed


# ---------- PAYMENTS ----------
def test_payments_accumulate_and_complete_received_order(db_session, make_po, receive, pay, tenant):
    po = make_po()
    receive(po, 10)

    pay(po, "100.00")
    db_session.expire_all()
    po = procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id)
    assert po.paid_amount == Decimal("100.00")
    assert po.status == POStatus.received

    pay(po, "155.00")
    db_session.expire_all()
    po = procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id)
    assert po.paid_amount == Decimal("255.00")
    assert po.status == POStatus.completed


def test_payment_over_balance_is_refused(db_session, make_po, pay, tenant):
    po = make_po()
    pay(po, "200.00")

    with pytest.raises(QuantityExceededError):
        pay(po, "55.01")

    db_session.expire_all()
    assert procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id).paid_amount == Decimal(
        "200.00"
    )


def test_payment_on_cancelled_order_is_refused(db_session, make_po, pay, tenant):
    po = make_po()
    procurement.update_status(db_session, po.id, company_id=tenant.company_id, status=POStatus.cancelled)

    with pytest.raises(InvalidStateError):
        pay(po, "10.00")


def test_payment_by_unknown_user_is_refused(db_session, make_po, tenant):
    po = make_po()

    with pytest.raises(NotFoundError):
        procurement.record_payment(
            db_session,
            po.id,
            company_id=tenant.company_id,
            amount=Decimal("10.00"),
            payment_method_id=tenant.payment_method_id,
            created_by=999_999,
        )

    db_session.expire_all()
    assert procurement.get_purchase_order(db_session, po.id, company_id=tenant.company_id).paid_amount == Decimal("0")


# ---------- DELETE ----------
def test_delete_fresh_order(db_session, make_po, tenant):
    po = make_po()
    po_id = po.id

    procurement.delete_purchase_order(db_session, po_id, company_id=tenant.company_id)

    with pytest.raises(NotFoundError):
        procurement.get_purchase_order(db_session, po_id, company_id=tenant.company_id)


def test_delete_refused_with_payments_or_receipts(db_session, make_po, receive, pay, tenant):
    paid = make_po()
    pay(paid, "10.00")
    received = make_po()
    receive(received, 1)

    with pytest.raises(InvalidStateError):
        procurement.delete_purchase_order(db_session, paid.id, company_id=tenant.company_id)
    with pytest.raises(InvalidStateError):
        procurement.delete_purchase_order(db_session, received.id, company_id=tenant.company_id)


# ---------- QUERIES ----------
def test_supplier_outstanding_ignores_cancelled(db_session, make_po, pay, tenant):
    open_po = make_po()
    cancelled = make_po()
    pay(open_po, "100.00")
    procurement.update_status(db_session, cancelled.id, company_id=tenant.company_id, status=POStatus.cancelled)

    out = procurement.get_supplier_outstanding(db_session, tenant.supplier_id, company_id=tenant.company_id)

    assert out["total_purchases"] == Decimal("255.00")
    assert out["total_paid"] == Decimal("100.00")
    assert out["outstanding"] == Decimal("155.00")


def test_list_filters_search_and_pagination(db_session, make_po, tenant):
    for _ in range(3):
        make_po()
    make_po(branch_id=tenant.branch2_id, invoice_number="INV-EAST-9")

    rows, total = procurement.list_purchase_orders(db_session, company_id=tenant.company_id, limit=2)
    assert total == 4
    assert len(rows) == 2

    rows, total = procurement.list_purchase_orders(db_session, company_id=tenant.company_id, branch_id=tenant.branch2_id)
    assert total == 1
    assert rows[0].po_number == "PO-EAST-00001"

    rows, total = procurement.list_purchase_orders(db_session, company_id=tenant.company_id, search="inv-east")
    assert total == 1

    rows, total = procurement.list_purchase_orders(db_session, company_id=tenant.company_id, search="Wholesale")
    assert total == 4

    _, total = procurement.list_purchase_orders(db_session, company_id=tenant.other_company_id)
    assert total == 0


def test_purchase_order_summary(db_session, make_po, pay, tenant):
    first = make_po()
    make_po()
    pay(first, "55.00")

    summary = procurement.get_purchase_order_summary(db_session, company_id=tenant.company_id)

    assert summary["total_count"] == 2
    assert summary["total_amount"] == Decimal("510.00")
    assert summary["total_paid"] == Decimal("55.00")
    assert summary["pending_amount"] == Decimal("455.00")
