# app/utils/decimal_utils.py
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def floor_amount(value) -> Decimal:
    """Floor to a whole currency unit, e.g. 149.85 -> 149."""
    return Decimal(str(value)).to_integral_value(rounding=ROUND_FLOOR)


def percentage(part: int, whole: int) -> int:
    """Whole-number percentage rounded half up (12.5 -> 13)."""
    if whole <= 0:
        return 0
    value = Decimal(100 * part) / Decimal(whole)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
