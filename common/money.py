"""Fixed-point helpers.

All amounts are ``Decimal``. Values are rounded once, at settlement, never
at intermediate steps.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from common.exceptions import InvalidArgumentError

MONEY_PLACES = 2
ZERO = Decimal("0")
# orders worth less than a cent before rounding are rejected
MIN_ORDER_VALUE = Decimal("0.01")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Parse a request value into a finite ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.
    """
    if value is None or isinstance(value, bool):
        raise InvalidArgumentError(f"{field} is required and must be numeric")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidArgumentError(f"{field} must be numeric, got {value!r}") from None
    if not d.is_finite():
        raise InvalidArgumentError(f"{field} must be finite, got {value!r}")
    return d


def positive_decimal(value: Any, field: str = "value") -> Decimal:
    d = to_decimal(value, field)
    if d <= 0:
        raise InvalidArgumentError(f"{field} must be greater than 0")
    return d


def quantize_money(value: Decimal, places: int = MONEY_PLACES) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def format_money(value: Decimal, places: int = MONEY_PLACES) -> str:
    """Render an amount fixed to ``places`` decimals for output envelopes."""
    return f"{quantize_money(value, places):.{places}f}"
