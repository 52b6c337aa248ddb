"""
Form input sanitizers.

Every sanitizer here is total: it never raises, it returns either the
normalized value or None. Callers collect human-readable messages into a
list and show the first one.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

ISO_DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NON_DIGITS = re.compile(r"\D", re.ASCII)
INT_REGEX = re.compile(r"^[+-]?\d+$", re.ASCII)

CENTS = Decimal("0.01")


def has_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def sanitize_text(value: Any) -> Optional[str]:
    if not has_text(value):
        return None
    return value.strip()


def sanitize_email(value: Any) -> Optional[str]:
    email = sanitize_text(value)
    if not email:
        return None
    return email if EMAIL_REGEX.match(email) else None


def sanitize_phone(value: Any) -> Optional[str]:
    """Keep only the digits; a usable phone number has at least 10."""
    if not isinstance(value, str):
        return None
    digits = NON_DIGITS.sub("", value)
    return digits if len(digits) >= 10 else None


def sanitize_zip(value: Any) -> Optional[str]:
    """Keep only the digits; accept ZIP (5) or ZIP+4 (9)."""
    if not isinstance(value, str):
        return None
    digits = NON_DIGITS.sub("", value)
    if len(digits) in (5, 9):
        return digits
    return None


def sanitize_iso_date(value: Any) -> Optional[str]:
    """
    Accept a YYYY-MM-DD string that is also a real calendar date.

    Examples:
        sanitize_iso_date("2024-02-29") -> "2024-02-29"
        sanitize_iso_date("2024-02-30") -> None
    """
    date_value = sanitize_text(value)
    if not date_value or not ISO_DATE_REGEX.match(date_value):
        return None
    try:
        date.fromisoformat(date_value)
    except ValueError:
        return None
    return date_value


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def sanitize_int(value: Any, min_value: Optional[int] = None, max_value: Optional[int] = None) -> Optional[int]:
    """
    Parse a whole number and apply inclusive bounds.

    Args:
        value: Raw form value (str or int). Blank input yields None.
        min_value (int, optional): Smallest accepted value.
        max_value (int, optional): Largest accepted value.

    Returns:
        int | None: The parsed number, or None when it is not a whole number
        or falls outside the bounds.
    """
    if _is_blank(value) or isinstance(value, bool):
        return None

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        parsed = int(value)
    elif isinstance(value, str):
        if not INT_REGEX.match(value.strip()):
            return None
        parsed = int(value.strip(), 10)
    else:
        return None

    if min_value is not None and parsed < min_value:
        return None
    if max_value is not None and parsed > max_value:
        return None
    return parsed


def sanitize_decimal(value: Any, min_value: Any = None, max_value: Any = None) -> Optional[Decimal]:
    """
    Parse a finite decimal, check inclusive bounds, round to 2 places.

    Returns:
        Decimal | None: e.g. "12.345" -> Decimal("12.35"); None on blank,
        malformed, non-finite, or out-of-range input.
    """
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None

    if min_value is not None and parsed < Decimal(str(min_value)):
        return None
    if max_value is not None and parsed > Decimal(str(max_value)):
        return None
    try:
        return parsed.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Too many digits for the context precision
        return None


def round2(value: Any) -> Decimal:
    """Round an already validated money amount to cents, half away from zero."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
