"""Shared utilities used across the studio booking agent."""

import re
from typing import Optional

_KENYAN_MOBILE_RE = re.compile(r"^(\+254|0)[17]\d{8}$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    A bare ``254`` country prefix is rewritten to ``+254``.

    Examples:
        >>> normalize_phone("0712 345 678")
        '0712345678'
        >>> normalize_phone("+254 (712) 345-678")
        '+254712345678'
        >>> normalize_phone("254712345678")
        '+254712345678'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    digits = re.sub(r"[^\d]", "", value)
    if digits.startswith("254") and len(digits) == 12:
        return "+" + digits
    return digits


def is_valid_phone(value: Optional[str]) -> bool:
    """Check a phone number against the Kenyan mobile format (07xx / 01xx / +254)."""
    if not value:
        return False
    return bool(_KENYAN_MOBILE_RE.match(normalize_phone(value)))


def normalize_question(text: str) -> str:
    """Normalize a customer question for grouping.

    Lowercases, drops ``?!.,`` punctuation, collapses whitespace and
    truncates to 100 characters.
    """
    lowered = re.sub(r"[?!.,]", "", text.lower())
    return re.sub(r"\s+", " ", lowered).strip()[:100]


def format_money(amount: float, currency: str = "KES") -> str:
    """Format an amount with thousands separators, e.g. ``KES 30,000``."""
    return f"{currency} {amount:,.0f}"
