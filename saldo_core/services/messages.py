"""User-facing texts of the saldo bot."""
from __future__ import annotations

from decimal import Decimal
from typing import Dict

TEXTS: Dict[str, str] = {
    "start": (
        "This bot checks your Lunch Check saldo once per day, and sends you a message if it changed. "
        "Press /newcard to register a card."
    ),
    "about": "This bot was programmed by a swiss guy.",
    "newcard.prompt": "Please send me your Lunch Check card number or link scanned from QR code. Or /cancel",
    "newcard.invalid": "Invalid Lunch Check card number. /cancel",
    "newcard.duplicate": "This card is already registered.",
    "cancel": "Current operation canceled.",
}


def text(key: str) -> str:
    return TEXTS[key]


def _fmt_balance(balance: Decimal) -> str:
    # At least two integer digits: 5.5 -> "05.50".
    return f"{balance:05.2f}"


def _fmt_active(is_active: bool) -> str:
    return "True" if is_active else "False"


def registration_message(balance: Decimal, is_active: bool) -> str:
    return f"Saldo: {_fmt_balance(balance)}\nActive: {_fmt_active(is_active)}"


def change_notification(balance: Decimal, is_active: bool) -> str:
    return f"Saldo: {_fmt_balance(balance)} CHF\nActive: {_fmt_active(is_active)}"
