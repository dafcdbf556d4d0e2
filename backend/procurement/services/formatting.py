"""
Display helpers shared by the GQR screens and exports: DD/MM/YYYY dates and
rupee amounts in words using the Indian numbering system.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.utils.dateparse import parse_date, parse_datetime

from procurement.services.errors import ProcurementError

_ONES = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine"]
_TEENS = [
    "Ten",
    "Eleven",
    "Twelve",
    "Thirteen",
    "Fourteen",
    "Fifteen",
    "Sixteen",
    "Seventeen",
    "Eighteen",
    "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

# (divisor, label), largest first. Amounts below a thousand are spelled directly.
_SCALES = (
    (1_000_000_000, "Billion"),
    (10_000_000, "Crore"),
    (100_000, "Lakh"),
    (1_000, "Thousand"),
)


def _coerce_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        parsed = parse_date(text)
        if parsed is None:
            parsed_dt = parse_datetime(text)
            parsed = parsed_dt.date() if parsed_dt else None
    except ValueError:
        return None
    return parsed


def format_date_ddmmyyyy(value) -> str:
    """Format a date, datetime or ISO string as DD/MM/YYYY; '' when unusable."""
    parsed = _coerce_date(value)
    if parsed is None:
        return ""
    return parsed.strftime("%d/%m/%Y")


def parse_ddmmyyyy(value) -> date | None:
    """Parse DD/MM/YYYY into a date; None on malformed input."""
    if not value or not isinstance(value, str):
        return None
    parts = value.strip().split("/")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError:
        return None


def parse_flexible_date(value) -> date | None:
    """Accept ISO YYYY-MM-DD or DD/MM/YYYY, as the entry forms send either."""
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    if "/" in value:
        return parse_ddmmyyyy(value)
    try:
        return parse_date(value.strip())
    except ValueError:
        return None


def _below_thousand(num: int) -> str:
    if num == 0:
        return ""
    if num < 10:
        return _ONES[num]
    if num < 20:
        return _TEENS[num - 10]
    if num < 100:
        return _TENS[num // 10] + (f" {_ONES[num % 10]}" if num % 10 else "")
    rest = num % 100
    return f"{_ONES[num // 100]} Hundred" + (f" and {_below_thousand(rest)}" if rest else "")


def _spell(num: int) -> str:
    if num < 1000:
        return _below_thousand(num)
    for divisor, label in _SCALES:
        if num >= divisor:
            head, rest = divmod(num, divisor)
            words = f"{_spell(head)} {label}"
            if rest:
                words += f" {_spell(rest)}"
            return words
    return _below_thousand(num)


def number_to_words(amount) -> str:
    """
    Spell a rupee amount, e.g. 150250.5 -> "One Lakh Fifty Thousand Two Hundred
    and Fifty Rupees and Fifty Paise Only". Returns '' for non-numeric input.
    """
    if amount is None or amount == "":
        return ""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return ""
    if not value.is_finite():
        return ""
    if value == 0:
        return "Zero Rupees Only"

    value = abs(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    rupees = int(value)
    paise = int((value - rupees) * 100)

    words = f"{_spell(rupees)} Rupees".lstrip()
    if paise:
        words += f" and {_spell(paise)} Paise"
    return f"{words} Only"


def to_decimal(value, field: str, default: Decimal | None = None) -> Decimal | None:
    """Parse a request number into Decimal; blank gives ``default``."""
    if value is None or value == "":
        return default
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ProcurementError(f"{field} must be a number.", code="invalid_number", field=field)
    if not parsed.is_finite():
        raise ProcurementError(f"{field} must be a number.", code="invalid_number", field=field)
    return parsed


def to_int(value, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ProcurementError(f"{field} must be a whole number.", code="invalid_number", field=field)
