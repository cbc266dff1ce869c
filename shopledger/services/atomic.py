from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from shopledger.app.core.config import settings
from shopledger.services.errors import LedgerError, InternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"


def is_unique_collision(exc: IntegrityError) -> bool:
    """
    True when ``exc`` is a duplicate key, i.e. a concurrent writer inserted
    the same BranchStock row or took the same PO number first.

    FK, NOT NULL and CHECK violations are not collisions: re-running the
    unit would fail the same way.
    """
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == UNIQUE_VIOLATION:  # psycopg
        return True
    return "UNIQUE constraint failed" in str(orig)  # sqlite3


def run_atomic(db: Session, fn: Callable[[], T], *, label: str, max_attempts: int | None = None) -> T:
    """
    Run ``fn`` as one unit of work and commit it.

    - LedgerError: rollback, re-raise as is (never retried)
    - version conflict / unique collision: rollback, run ``fn`` again
    - any other storage error: rollback, InternalError

    ``fn`` must (re)load everything it touches: after a rollback the
    session's objects are expired.
    """
    attempts = max_attempts or settings.TX_MAX_RETRIES
    last_exc: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            result = fn()
            db.commit()
            return result
        except LedgerError:
            db.rollback()
            raise
        except StaleDataError as exc:
            db.rollback()
            last_exc = exc
            logger.warning("%s: concurrent write conflict (attempt %d/%d): %s", label, attempt, attempts, exc)
        except IntegrityError as exc:
            db.rollback()
            if not is_unique_collision(exc):
                logger.exception("%s: constraint violation", label)
                raise InternalError(f"{label} failed") from exc
            last_exc = exc
            logger.warning("%s: duplicate key from concurrent writer (attempt %d/%d): %s", label, attempt, attempts, exc)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("%s: storage failure", label)
            raise InternalError(f"{label} failed") from exc
        except Exception:
            db.rollback()
            raise

    raise InternalError(f"{label} failed after {attempts} attempts") from last_exc
