"""Utility helpers for Lunch Check card number parsing and presentation."""
from __future__ import annotations

import re
from typing import Optional

from saldo_core.config import DEFAULT_LUNCHCHECK_URL

_GROUPS = r"(?<!\d)([0-9]{4}) ?([0-9]{4}) ?([0-9]{4}) ?([0-9]{4})(?!\d)"


def card_pattern(base_url: str = DEFAULT_LUNCHCHECK_URL) -> "re.Pattern[str]":
    """Card text pattern, optionally prefixed by the balance page URL (QR code link)."""
    return re.compile(f"(?:{re.escape(base_url)})?" + _GROUPS)


_DEFAULT_PATTERN = card_pattern()


def parse_card_number(text: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Return the canonical 16-digit card number found in ``text`` or ``None``."""
    if not text:
        return None
    pattern = _DEFAULT_PATTERN if not base_url or base_url == DEFAULT_LUNCHCHECK_URL else card_pattern(base_url)
    m = pattern.search(text)
    if not m:
        return None
    return "".join(m.groups())


def mask_card_number(card_number: str) -> str:
    """Hide the middle digits for log lines: ``1234********3456``."""
    if len(card_number) <= 8:
        return card_number
    return f"{card_number[:4]}{'*' * (len(card_number) - 8)}{card_number[-4:]}"


__all__ = ["card_pattern", "parse_card_number", "mask_card_number"]
