"""Display helpers for CEPs and card numbers."""
from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def format_cep(cep: str | None) -> str:
    """01310100 -> 01310-100. Anything that is not 8 digits comes back untouched."""
    cleaned = digits_only(cep)
    if len(cleaned) == 8:
        return f"{cleaned[:5]}-{cleaned[5:]}"
    return cep or ""


def mask_cep(value: str | None) -> str:
    """Mask applied while the user types: keeps at most 8 digits."""
    cleaned = digits_only(value)[:8]
    if len(cleaned) > 5:
        return f"{cleaned[:5]}-{cleaned[5:]}"
    return cleaned


def mask_card(last4: str | None) -> str:
    return f"•••• •••• •••• {last4 or ''}".rstrip()


def luhn_valid(number: str | None) -> bool:
    """Luhn checksum over a 13-19 digit card number."""
    cleaned = digits_only(number)
    if len(cleaned) < 13 or len(cleaned) > 19:
        return False
    total = 0
    for position, char in enumerate(reversed(cleaned)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0
