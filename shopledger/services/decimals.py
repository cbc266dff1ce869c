from __future__ import annotations

from decimal import Decimal

ZERO = Decimal("0")


def D(v) -> Decimal:
    if v is None:
        return ZERO
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v).strip())


def money2(v) -> Decimal:
    return D(v).quantize(Decimal("0.01"))


def qty3(v) -> Decimal:
    return D(v).quantize(Decimal("0.001"))
