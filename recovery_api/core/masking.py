"""Masking of personal data before it reaches logs or audit entries."""

import re


def mask_phone(phone: str | int | None) -> str:
    """Hide every digit of a phone number except the last four.

    >>> mask_phone("70123456")
    '****3456'
    """
    if not phone:
        return "****"
    phone_str = str(phone)
    if len(phone_str) < 4:
        return "****"
    return re.sub(r"\d", "*", phone_str[:-4]) + phone_str[-4:]


def redact_phone(text: str, phone: str) -> str:
    """Replace any occurrence of ``phone``'s digits in ``text`` with its mask."""
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return text
    return text.replace(digits, mask_phone(digits))
