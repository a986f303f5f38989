# chatcart/utils/phone.py
import re

from chatcart.exceptions import ValidationError

_NON_PHONE_CHARS = re.compile(r"[^0-9+]")


def normalize_phone(phone: str) -> str:
    """Strip everything except digits and '+' so one customer maps to one key."""
    normalized = _NON_PHONE_CHARS.sub("", phone or "")
    if not normalized.strip("+"):
        raise ValidationError(f"Invalid customer phone: {phone!r}", code="invalid_phone")
    return normalized
