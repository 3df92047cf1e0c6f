"""
Currency Formatting Module

Amounts are always non-negative integers in the fund's display unit (toman).
NEVER uses float for monetary values; this module only formats, parses and
validates integer amounts.
"""

from typing import Any, Optional
import re

from .exceptions import ValidationError

PERSIAN_DIGITS = "۰۱۲۳۴۵۶۷۸۹"
ARABIC_INDIC_DIGITS = "٠١٢٣٤٥٦٧٨٩"

# Thousands separator used by the fa-IR locale
PERSIAN_GROUP_SEPARATOR = "٬"

DEFAULT_CURRENCY_LABEL = "تومان"

_TO_ASCII = str.maketrans(
    PERSIAN_DIGITS + ARABIC_INDIC_DIGITS,
    "0123456789" * 2
)
_TO_PERSIAN = str.maketrans("0123456789", PERSIAN_DIGITS)


def to_ascii_digits(text: str) -> str:
    """Convert Persian and Arabic-Indic digits to ASCII digits"""
    return text.translate(_TO_ASCII)


def to_persian_digits(text: str) -> str:
    """Convert ASCII digits to Persian digits"""
    return text.translate(_TO_PERSIAN)


def format_number(value: int, persian: bool = True) -> str:
    """Format an integer with thousands separators"""
    grouped = f"{int(value):,}"
    if not persian:
        return grouped
    return to_persian_digits(grouped.replace(",", PERSIAN_GROUP_SEPARATOR))


def format_currency(value: int, label: str = DEFAULT_CURRENCY_LABEL,
                    persian: bool = True) -> str:
    """Format an amount for display, e.g. ``۱٬۲۰۰٬۰۰۰ تومان``"""
    return f"{format_number(value, persian)} {label}"


def parse_amount(value: Any) -> int:
    """
    Parse an amount typed by an operator.

    Accepts ints, numeric strings with ``,``/``٬`` grouping and Persian
    digits. Anything unparseable or negative becomes 0, the same way an
    empty form field is treated.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value > 0 else 0

    text = to_ascii_digits(str(value)).strip()
    text = re.sub(r"[,\s" + PERSIAN_GROUP_SEPARATOR + "]", "", text)
    if not re.fullmatch(r"\d+", text):
        return 0
    return int(text)


def require_positive_amount(amount: Optional[int], field_name: str = "amount") -> int:
    """Validate that an amount is a positive integer and return it"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{field_name} must be an integer", "invalid_amount")
    if amount <= 0:
        raise ValidationError(f"{field_name} must be greater than zero", "invalid_amount")
    return amount
