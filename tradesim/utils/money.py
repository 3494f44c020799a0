"""
Decimal helpers for money arithmetic.

Every amount that flows through the ledger (capital, committed size,
realized size, profit) is a `decimal.Decimal` quantized to the
precision chosen when capital is set.  Prices read from pandas frames
are floats; they cross into Decimal only through `to_decimal()`, which
goes via `str()` so that the shortest float representation is used
instead of its binary expansion.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Scale for position quantities (units of the instrument).
QUANTITY_PRECISION = 8


def quantum(precision: int) -> Decimal:
    """Return the smallest step for `precision` decimal places (2 -> 0.01)."""
    return Decimal(1).scaleb(-precision)


def to_decimal(value: Any) -> Decimal:
    """Convert an int, str, float or Decimal to Decimal.

    Raises
    ------
    ValueError
        If the value cannot be represented (``None``, ``"abc"``, NaN).
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Not a numeric value: {value!r}")
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a numeric value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite value: {value!r}")
    return result


def quantize(value: Any, precision: int) -> Decimal:
    """Round `value` to `precision` places using banker's rounding."""
    return to_decimal(value).quantize(quantum(precision), rounding=ROUND_HALF_EVEN)
