"""
Phone number helpers.

WhatsApp sends numbers as bare digits with the country code
(27821234567). Staff records may carry any formatting.
"""

import re
from typing import Optional

MIN_DIGITS = 10
MAX_DIGITS = 15
DEFAULT_COUNTRY_CODE = "27"


def normalize_phone(phone: Optional[str]) -> str:
    """
    Strip everything but digits.

    Returns:
        Digits only, or an empty string for empty input.
    """
    if not phone:
        return ""
    return re.sub(r"\D", "", phone)


def is_valid_phone(phone: Optional[str]) -> bool:
    """At least 10 and at most 15 digits once formatting is removed."""
    digits = normalize_phone(phone)
    return MIN_DIGITS <= len(digits) <= MAX_DIGITS


def format_phone_number(phone: str) -> str:
    """
    Format to international E.164-style (+<digits>).

    Local numbers are assumed South African: 0821234567 -> +27821234567,
    821234567 -> +27821234567.
    """
    digits = normalize_phone(phone)
    if phone.strip().startswith("+"):
        return f"+{digits}"
    if len(digits) == 10 and digits.startswith("0"):
        return f"+{DEFAULT_COUNTRY_CODE}{digits[1:]}"
    if len(digits) == 9:
        return f"+{DEFAULT_COUNTRY_CODE}{digits}"
    return f"+{digits}"


def mask_phone(phone: Optional[str]) -> str:
    """Keep only the last 4 digits for logs: 27821234567 -> *******4567."""
    if not phone or len(phone) < 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]
