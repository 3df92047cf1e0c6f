"""
Calendar Date Helpers

Dates are plain ``YYYY-MM-DD`` strings in the fund's calendar (Solar Hijri in
practice). No calendar conversion happens here: month arithmetic follows a
30-day month convention and the day of month is capped at 30.
"""

from datetime import date
from typing import Tuple

from .currency import to_ascii_digits, to_persian_digits
from .exceptions import ValidationError

MAX_DAY_OF_MONTH = 30
MONTHS_PER_YEAR = 12


def normalize_date(date_str: str) -> str:
    """
    Normalize a date string to ``YYYY-MM-DD``.

    Accepts Persian/Arabic-Indic digits, ``/`` or ``-`` separators, ISO
    timestamps (the time part is dropped) and ``MM/DD/YYYY`` ordering.
    Returns an empty string for empty input; text that does not look like a
    date is returned stripped and unchanged.
    """
    if not date_str or not date_str.strip():
        return ""

    text = date_str.strip()
    if "T" in text:
        text = text[:10]
    text = to_ascii_digits(text)

    separator = "/" if "/" in text else "-"
    parts = [p.strip() for p in text.split(separator)]
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return text

    a, b, c = parts
    if len(c) >= 4:
        return f"{c}-{a.zfill(2)}-{b.zfill(2)}"
    if len(a) >= 4:
        return f"{a}-{b.zfill(2)}-{c.zfill(2)}"
    return text


def parse_date(date_str: str) -> Tuple[int, int, int]:
    """Split a date into (year, month, day), raising ValidationError if malformed"""
    normalized = normalize_date(date_str)
    parts = normalized.split("-")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValidationError(f"Invalid date: {date_str!r}", "invalid_date")

    year, month, day = (int(p) for p in parts)
    if not 1 <= month <= MONTHS_PER_YEAR or not 1 <= day <= 31:
        raise ValidationError(f"Invalid date: {date_str!r}", "invalid_date")
    return year, month, day


def require_date(date_str: str, field_name: str = "date") -> str:
    """Validate a required date field and return it normalized"""
    if not date_str or not date_str.strip():
        raise ValidationError(f"{field_name} is required", "missing_date")
    parse_date(date_str)
    return normalize_date(date_str)


def add_months_to_date(date_str: str, months: int) -> str:
    """
    Add whole months to a date.

    The month number overflows into the year past 12 and the day of month is
    capped at 30, e.g. ``1400-11-31`` plus 3 months is ``1401-02-30``.
    """
    if months < 0:
        raise ValidationError("months must not be negative", "invalid_months")

    year, month, day = parse_date(date_str)
    new_month = month + months
    new_year = year
    while new_month > MONTHS_PER_YEAR:
        new_month -= MONTHS_PER_YEAR
        new_year += 1

    return f"{new_year}-{new_month:02d}-{min(day, MAX_DAY_OF_MONTH):02d}"


def format_date_short(date_str: str, persian: bool = True) -> str:
    """Format a date for display, e.g. ``۱۴۰۲/۰۱/۱۵``"""
    normalized = normalize_date(date_str)
    if not normalized:
        return "—"
    display = normalized.replace("-", "/")
    return to_persian_digits(display) if persian else display


def today_str() -> str:
    """Today's date as ``YYYY-MM-DD`` (system calendar)"""
    return date.today().isoformat()
