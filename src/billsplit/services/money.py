"""Currency arithmetic.

Every amount in billsplit is a ``Decimal``. ``round_money`` is the only
place where amounts are rounded to cents: halves go away from zero, so
``0.005`` becomes ``0.01`` and ``-0.005`` becomes ``-0.01``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)

MoneyLike = Union[Decimal, int, float, str]

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


def to_money(value: MoneyLike | None, default: Decimal | None = None) -> Decimal:
    if value is None or value == "":
        if default is not None:
            return default
        raise ValueError("amount is required")
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        if default is not None:
            return default
        raise ValueError(f"not a valid amount: {value!r}") from exc
    if not amount.is_finite():
        if default is not None:
            return default
        raise ValueError(f"not a finite amount: {value!r}")
    return amount


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO.quantize(CENT)
    return round_money(part / whole * HUNDRED)


def extras_multiplier(subtotal: Decimal, tax: Decimal, tip: Decimal) -> Decimal:
    """Factor that spreads tax and tip over items in proportion to their price."""
    if subtotal <= 0:
        return ONE
    return ONE + (tax + tip) / subtotal


def format_money(amount: Decimal, currency: str = "USD") -> str:
    value = round_money(amount)
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{value:,.2f} {currency.upper()}"
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"
