"""M-Pesa phone numbers."""
import re
from typing import Optional

COUNTRY_CODE = "254"

LOCAL_PATTERN = re.compile(r"^0([17]\d{8})$")
INTERNATIONAL_PATTERN = re.compile(r"^\+?254([17]\d{8})$")

_ignored_chars = re.compile(r"[\s\-()]")


def normalize_phone_number(value: Optional[str]) -> Optional[str]:
    """Normalize a phone number to the 12 character ``2547XXXXXXXX`` form.

    Returns:
        The normalized number, or None if it is not a valid M-Pesa number.
    """
    if not value:
        return None

    v = _ignored_chars.sub("", value)
    match = LOCAL_PATTERN.match(v) or INTERNATIONAL_PATTERN.match(v)
    if not match:
        return None

    return COUNTRY_CODE + match.group(1)


def is_valid_phone_number(value: Optional[str]) -> bool:
    """Whether a phone number can receive an M-Pesa prompt."""
    return normalize_phone_number(value) is not None
