"""
US phone number validation and formatting.

Profiles store numbers in ``+1XXXXXXXXXX`` form so the per-HOA uniqueness
constraint compares like with like.
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def _digits(phone_number: str) -> str:
    return _NON_DIGITS.sub("", phone_number or "")


def _national_digits(phone_number: str) -> Optional[str]:
    """The 10-digit national number, or None if the input is not a US number."""
    if not isinstance(phone_number, str):
        return None
    digits = _digits(phone_number)
    if len(digits) == 10:
        return digits
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return None


def is_valid_phone_number(phone_number: str) -> bool:
    """Accepts 10 digits, 1 + 10 digits or +1 + 10 digits, ignoring formatting."""
    return _national_digits(phone_number) is not None


def normalize_phone_number(phone_number: str) -> str:
    """
    Normalize a US phone number to ``+1XXXXXXXXXX``.

    Raises:
        ValueError: If the number is not a valid US phone number
    """
    national = _national_digits(phone_number)
    if national is None:
        raise ValueError("Please enter a valid phone number")
    return f"+1{national}"


def format_phone_number(phone_number: str) -> str:
    """Display format, e.g. ``(555) 123-4567``. Invalid input is returned unchanged."""
    national = _national_digits(phone_number)
    if national is None:
        return phone_number
    return f"({national[:3]}) {national[3:6]}-{national[6:]}"


def get_phone_validation_error(phone_number: str) -> Optional[str]:
    if not phone_number or not phone_number.strip():
        return "Phone number is required"
    if not is_valid_phone_number(phone_number):
        return "Please enter a valid 10-digit phone number"
    return None
