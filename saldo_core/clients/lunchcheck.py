# -*- coding: utf-8 -*-
"""Lunch Check balance page client."""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from saldo_core.config import DEFAULT_LUNCHCHECK_URL
from saldo_core.errors import ParseError, SourceUnavailable
from saldo_core.storage import to_balance
from saldo_core.utils.card import mask_card_number

# German page wording only; any status label other than "aktiv" counts as inactive.
CARD_STATUS_RE = re.compile(
    r"Kontostand.*?([0-9][0-9']*[.,][0-9]{2}) CHF.*?Kartenstatus.*?<b>(.*?)</b>",
    re.DOTALL,
)
ACTIVE_LABEL = "aktiv"


@dataclass(frozen=True, slots=True)
class CardReading:
    balance: Decimal
    is_active: bool


def parse_balance_page(text: str) -> CardReading:
    """Extract balance and card status from the balance page HTML."""
    m = CARD_STATUS_RE.search(text or "")
    if not m:
        raise ParseError("balance page does not contain a balance and a card status")
    raw_balance = m.group(1).replace("'", "").replace(",", ".")
    try:
        balance = to_balance(raw_balance)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc
    return CardReading(balance=balance, is_active=m.group(2) == ACTIVE_LABEL)


class LunchCheckClient:
    """Thin async wrapper around the Lunch Check saldo page."""

    def __init__(
        self,
        base_url: str = DEFAULT_LUNCHCHECK_URL,
        *,
        timeout: float = 20.0,
        session: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _client(self) -> httpx.AsyncClient:
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
            self._owns_session = True
        return self._session

    async def fetch(self, card_number: str) -> CardReading:
        url = f"{self._base_url}{card_number}"
        try:
            response = await self._client().get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailable(
                f"balance source HTTP error {exc.response.status_code} for card {mask_card_number(card_number)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(
                f"balance source network error for card {mask_card_number(card_number)}: {exc}"
            ) from exc
        try:
            return parse_balance_page(response.text)
        except ParseError as exc:
            raise ParseError(f"error when trying to get saldo for card {mask_card_number(card_number)}: {exc}") from exc

    async def aclose(self) -> None:
        if not self._owns_session or self._session is None:
            return
        if not self._session.is_closed:
            await self._session.aclose()
        self._session = None
