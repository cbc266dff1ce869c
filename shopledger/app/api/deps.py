from __future__ import annotations

from typing import Generator

from fastapi import Header

from shopledger.app.db.session import SessionLocal


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Authentication lives in front of this service; it forwards the tenant and
# the acting user as headers.
def get_company_id(x_company_id: int = Header(alias="X-Company-Id")) -> int:
    return x_company_id


def get_user_id(x_user_id: int = Header(alias="X-User-Id")) -> int:
    return x_user_id
