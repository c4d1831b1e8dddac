"""Input normalization for target periods and money amounts."""

import calendar
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Tuple

from loan_channel.core.exceptions import ValidationError

CENT = Decimal("0.01")

_MONTH_NAMES = {name.lower(): index for index, name in enumerate(calendar.month_name) if name}
_MONTH_ABBRS = {name.lower(): index for index, name in enumerate(calendar.month_abbr) if name}


def normalize_month(month: Any) -> int:
    """Accepts 1-12, a numeric string or an English month name ("June", "jun")."""
    if isinstance(month, bool):
        raise ValidationError(f"Invalid month: {month!r}")
    if isinstance(month, str):
        cleaned = month.strip().lower()
        if cleaned in _MONTH_NAMES:
            return _MONTH_NAMES[cleaned]
        if cleaned in _MONTH_ABBRS:
            return _MONTH_ABBRS[cleaned]
        if not cleaned.isdigit():
            raise ValidationError(f"Invalid month: {month!r}")
        month = int(cleaned)
    if isinstance(month, float) and month.is_integer():
        month = int(month)
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month!r}")
    return month


def normalize_year(year: Any) -> int:
    if isinstance(year, bool):
        raise ValidationError(f"Invalid year: {year!r}")
    if isinstance(year, str) and year.strip().isdigit():
        year = int(year.strip())
    if not isinstance(year, int) or not 1000 <= year <= 9999:
        raise ValidationError(f"Year must be a 4-digit number, got {year!r}")
    return year


def normalize_period(month: Any, year: Any) -> Tuple[int, int]:
    return normalize_month(month), normalize_year(year)


def parse_amount(value: Any, field: str = "amount") -> float:
    """Parse a finite, non-negative number. Strings are accepted."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required and must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is required and must be a number")
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a finite number")
    if number < 0:
        raise ValidationError(f"{field} cannot be negative")
    return number


def round_money(value: Any) -> float:
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def split_evenly(total: Any, parts: int) -> List[float]:
    """Split ``total`` into ``parts`` cent-rounded shares that add up to it.

    Leftover cents go one each to the first shares, so ``split_evenly(100, 3)``
    is ``[33.34, 33.33, 33.33]``.
    """
    if parts <= 0:
        return []
    total_cents = int((Decimal(str(total)) / CENT).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    base, remainder = divmod(total_cents, parts)
    return [float((base + (1 if index < remainder else 0)) * CENT) for index in range(parts)]
