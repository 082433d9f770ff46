"""
Fixed-point helpers for token amounts.

Every amount that crosses the ledger or the database boundary goes through
``truncate_amount`` so repeated truncation never drifts.
"""

from decimal import Decimal, ROUND_FLOOR, InvalidOperation
from typing import Union

AMOUNT_DECIMALS = 6
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMALS)

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    """Convert a ledger or database value to ``Decimal``.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def truncate_amount(value: Number) -> Decimal:
    """Floor an amount to six decimal places."""
    return to_decimal(value).quantize(AMOUNT_QUANTUM, rounding=ROUND_FLOOR)


def format_amount(value: Number) -> str:
    """Render an amount for a ledger ``value`` field (no exponent, no trailing zeros)."""
    text = format(truncate_amount(value), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
