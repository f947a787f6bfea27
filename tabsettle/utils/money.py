"""
Money helpers.

All settlement arithmetic runs on integer minor units (cents). Decimal
values only exist at the edges: database columns, API schemas and
provider payloads.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal('0.01')

Number = Union[Decimal, int, float, str]


def round_decimal(value: Number, precision: Decimal = CENT) -> Decimal:
    """
    Round a value to the given precision (half-up, as money is usually rounded).

    Example:
        >>> round_decimal(Decimal("43.335"))
        Decimal('43.34')
    """
    return Decimal(str(value)).quantize(precision, rounding=ROUND_HALF_UP)


def to_cents(value: Number) -> int:
    """
    Convert a decimal amount to integer cents.

    Example:
        >>> to_cents(Decimal("12.34"))
        1234
    """
    return int(round_decimal(value) * 100)


def from_cents(cents: int) -> Decimal:
    """
    Convert integer cents back to a 2-dp Decimal.

    Example:
        >>> from_cents(1234)
        Decimal('12.34')
    """
    return (Decimal(cents) / 100).quantize(CENT)
