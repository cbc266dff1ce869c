from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shopledger.services.errors import (
    AlreadyProcessedError,
    InsufficientPaidError,
    InternalError,
    InvalidInputError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    QuantityExceededError,
)

logger = logging.getLogger(__name__)

# most specific first (InsufficientStockError is a QuantityExceededError)
STATUS_BY_ERROR: list[tuple[type[LedgerError], int]] = [
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (AlreadyProcessedError, 409),
    (QuantityExceededError, 422),
    (InsufficientPaidError, 422),
    (InvalidInputError, 422),
    (InternalError, 500),
]


def status_for(exc: LedgerError) -> int:
    for cls, status_code in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status_code
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=status_code, content={"code": exc.code, "detail": exc.detail})
