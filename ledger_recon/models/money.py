"""
Money and month helpers.

Amounts are integer minor units (cents) everywhere inside the engine.
Conversion from parser output happens once, at the model boundary.
"""

import re
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Union

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
_MONTH_RE = re.compile(MONTH_PATTERN)

MoneyInput = Union[int, Decimal, str, float]


def to_cents(value: MoneyInput) -> int:
    """
    Convert a money value to integer cents.

    int values are taken as cents already. Decimal, float and decimal
    strings ("12.34" or "12,34") are major units and are rounded
    half-to-even to the nearest cent.
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a money amount")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        value = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        if "," in text and "." in text:
            # 1.234,56 -> thousands separator is '.'
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", ".")
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Not a money amount: {value!r}")
    if not isinstance(value, Decimal):
        raise ValueError(f"Unsupported money type: {type(value).__name__}")
    cents = (value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN)
    return int(cents)


def format_cents(cents: int) -> str:
    """Render cents as a plain decimal string, e.g. -12000 -> '-120.00'."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def is_valid_month(value: str) -> bool:
    return bool(_MONTH_RE.match(value))


def month_of(day: date) -> str:
    """YYYY-MM of a calendar date."""
    return f"{day.year:04d}-{day.month:02d}"


def _split_month(month: str) -> tuple[int, int]:
    if not is_valid_month(month):
        raise ValueError(f"Invalid month (expected YYYY-MM): {month!r}")
    year, mon = month.split("-")
    return int(year), int(mon)


def months_back(month: str, count: int) -> str:
    """Shift a YYYY-MM month by `count` months into the past (negative = future)."""
    year, mon = _split_month(month)
    index = year * 12 + (mon - 1) - count
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def month_before(month: str) -> str:
    return months_back(month, 1)


def month_after(month: str) -> str:
    return months_back(month, -1)
