import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError

from shopledger.services.atomic import is_unique_collision, run_atomic
from shopledger.services.errors import InternalError, NotFoundError


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _integrity(orig) -> IntegrityError:
    return IntegrityError("INSERT INTO purchase_orders ...", {}, orig)


def _failing(errors, result="ok"):
    """fn for run_atomic: raises ``errors`` one per call, then returns ``result``."""
    calls = []

    def _fn():
        calls.append(1)
        if len(calls) <= len(errors):
            raise errors[len(calls) - 1]
        return result

    return _fn, calls


@pytest.mark.parametrize(
    "orig, expected",
    [
        (sqlite3.IntegrityError("UNIQUE constraint failed: purchase_orders.company_id, purchase_orders.po_number"), True),
        (sqlite3.IntegrityError("FOREIGN KEY constraint failed"), False),
        (sqlite3.IntegrityError("CHECK constraint failed: ck_po_paid_nonneg"), False),
        (_PgError("23505"), True),
        (_PgError("23503"), False),
        (_PgError("23514"), False),
    ],
)
def test_only_duplicate_keys_count_as_collisions(orig, expected):
    assert is_unique_collision(_integrity(orig)) is expected


def test_unique_collision_is_retried(db_session):
    """
    GIVEN a unit of work that hits a duplicate key once
    THEN it runs again and its result is returned
    """
    fn, calls = _failing([_integrity(sqlite3.IntegrityError("UNIQUE constraint failed: branch_stock.item_id"))])

    assert run_atomic(db_session, fn, label="unit") == "ok"
    assert len(calls) == 2


def test_foreign_key_violation_is_not_retried(db_session):
    """
    GIVEN a unit of work that violates a foreign key
    THEN InternalError after a single attempt
    """
    fn, calls = _failing([_integrity(sqlite3.IntegrityError("FOREIGN KEY constraint failed"))] * 5)

    with pytest.raises(InternalError):
        run_atomic(db_session, fn, label="unit")
    assert len(calls) == 1


def test_collisions_give_up_after_max_attempts(db_session):
    fn, calls = _failing([_integrity(_PgError("23505"))] * 10)

    with pytest.raises(InternalError):
        run_atomic(db_session, fn, label="unit", max_attempts=3)
    assert len(calls) == 3


def test_ledger_errors_pass_through_untouched(db_session):
    fn, calls = _failing([NotFoundError("User not found", user_id=1)])

    with pytest.raises(NotFoundError):
        run_atomic(db_session, fn, label="unit")
    assert len(calls) == 1
