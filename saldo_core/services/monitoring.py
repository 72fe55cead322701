"""Scheduled balance checks and card registration."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from saldo_core.clients.lunchcheck import CardReading
from saldo_core.clients.telegram_gateway import MessageGateway
from saldo_core.errors import GatewaySendError, ParseError, SourceUnavailable
from saldo_core.services.messages import change_notification, registration_message
from saldo_core.storage import Card, Store
from saldo_core.telemetry import timed
from saldo_core.utils.card import mask_card_number, parse_card_number


LOGGER = logging.getLogger(__name__)


class BalanceSource(Protocol):
    async def fetch(self, card_number: str) -> CardReading:
        ...


@dataclass(slots=True)
class TickReport:
    checked: int = 0
    changed: int = 0
    notified: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class RegistrationResult:
    """Outcome of one registration attempt.

    ``ok`` is False when the text held no card number or the balance source
    failed; ``added`` is False when the chat already tracks the card.
    """

    ok: bool
    card_number: Optional[str] = None
    added: bool = False
    reading: Optional[CardReading] = None
    error: Optional[str] = None


class MonitoringEngine:
    def __init__(
        self,
        store: Store,
        source: BalanceSource,
        gateway: MessageGateway,
        *,
        concurrency: int = 8,
        base_url: Optional[str] = None,
    ) -> None:
        self._store = store
        self._source = source
        self._gateway = gateway
        self._concurrency = max(1, concurrency)
        self._base_url = base_url

    async def run_tick(self) -> TickReport:
        """Check every registered card once; never raises for per-card failures."""
        report = TickReport()
        refs = self._store.card_refs()
        if not refs:
            return report
        sem = asyncio.Semaphore(self._concurrency)

        async def _guarded(chat_id: int, card_number: str) -> None:
            async with sem:
                await self._check_card(chat_id, card_number, report)

        with timed("scan.tick", cards=len(refs)) as fields:
            await asyncio.gather(*(_guarded(chat_id, number) for chat_id, number in refs))
            fields.update(checked=report.checked, changed=report.changed, failed=report.failed)
        LOGGER.info(
            "scan finished: checked=%d changed=%d notified=%d failed=%d",
            report.checked,
            report.changed,
            report.notified,
            report.failed,
        )
        return report

    async def _check_card(self, chat_id: int, card_number: str, report: TickReport) -> None:
        masked = mask_card_number(card_number)
        try:
            reading = await self._source.fetch(card_number)
        except (SourceUnavailable, ParseError) as exc:
            # Card stays registered; the next tick retries it.
            report.failed += 1
            LOGGER.warning("chat %s card %s skipped: %s", chat_id, masked, exc)
            return
        report.checked += 1

        updated = self._store.apply_reading(chat_id, card_number, reading.balance, reading.is_active)
        if updated is None:
            return
        report.changed += 1
        LOGGER.info("chat %s card %s changed: saldo=%s active=%s", chat_id, masked, updated.last_balance, updated.is_active)
        try:
            await self._gateway.send_message(chat_id, change_notification(updated.last_balance, updated.is_active))
        except GatewaySendError as exc:
            LOGGER.warning("notification for chat %s card %s not delivered: %s", chat_id, masked, exc)
            return
        report.notified += 1

    async def register(self, chat_id: int, text: str, chat_metadata: Optional[Mapping[str, Any]] = None) -> RegistrationResult:
        card_number = parse_card_number(text, self._base_url)
        if card_number is None:
            return RegistrationResult(ok=False, error="no card number in text")
        masked = mask_card_number(card_number)
        try:
            reading = await self._source.fetch(card_number)
        except (SourceUnavailable, ParseError) as exc:
            LOGGER.info("chat %s registration of card %s failed: %s", chat_id, masked, exc)
            return RegistrationResult(ok=False, card_number=card_number, error=str(exc))

        card = Card(card_number=card_number, last_balance=reading.balance, is_active=reading.is_active)
        added = self._store.register_card(chat_id, chat_metadata, card)
        LOGGER.info("chat %s card %s %s", chat_id, masked, "registered" if added else "already registered")
        try:
            await self._gateway.send_message(chat_id, registration_message(reading.balance, reading.is_active))
        except GatewaySendError as exc:
            LOGGER.warning("registration reply for chat %s not delivered: %s", chat_id, exc)
        return RegistrationResult(ok=True, card_number=card_number, added=added, reading=reading)
