"""Money helpers.

Amounts are :class:`Decimal` throughout. Intermediate results are never rounded;
:func:`round_amount` is only applied when an amount leaves the system (display, the
payment gateway).
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

ZERO = Decimal(0)

CENTS = Decimal("0.01")

AmountLike = Union[Decimal, int, str]


def to_amount(v: object) -> Decimal:
    """Convert a value to a :class:`Decimal` amount.

    Floats are converted through their ``repr`` so ``0.1`` becomes ``Decimal("0.1")``.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(v, bool):
        raise ValueError(f"Invalid amount: {v!r}")
    elif isinstance(v, Decimal):
        d = v
    elif isinstance(v, (int, str)):
        try:
            d = Decimal(v)
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {v!r}")
    elif isinstance(v, float):
        d = Decimal(repr(v))
    else:
        raise ValueError(f"Invalid amount: {v!r}")

    if not d.is_finite():
        raise ValueError(f"Invalid amount: {v!r}")

    return d


def round_amount(amount: Decimal) -> Decimal:
    """Round an amount to 2 decimal places."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def clamp_amount(amount: Decimal) -> Decimal:
    """Clamp an amount so it is never negative."""
    return amount if amount > ZERO else ZERO


def format_amount(amount: Decimal, currency: str = "") -> str:
    """Format an amount for display, e.g. ``KES 1,200.00``."""
    text = f"{round_amount(amount):,.2f}"
    return f"{currency} {text}" if currency else text
