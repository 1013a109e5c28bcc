"""
Normalization helpers for values read from the store.
Amounts may arrive as Decimal, numeric strings, ints or floats; dates as date, datetime or ISO strings.
"""
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Union

CENT = Decimal("0.01")


def to_float(value: Any) -> float:
    """Convert a stored amount to float. None counts as zero."""
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    return float(value)


def to_money(value: Union[Decimal, float, int, str]) -> Decimal:
    """Convert an amount to an exact two-decimal value for storage."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
