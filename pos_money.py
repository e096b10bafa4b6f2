"""Decimal helpers shared by the cart, the ledger and receipts."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Return a finite Decimal for numeric input, None for anything else."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not result.is_finite():
        return None
    return result


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    result = parse_decimal(value)
    return default if result is None else result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Any) -> str:
    return str(quantize_money(to_decimal(value)))


def number_str(value: Any) -> str:
    """Plain number text: ``2`` for 2.00, ``1.5`` for 1.50."""
    d = to_decimal(value)
    if d == d.to_integral_value():
        return str(d.quantize(Decimal(1)))
    return format(d.normalize(), "f")
