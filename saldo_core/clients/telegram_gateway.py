"""Messaging gateway: the only way the core talks back to a chat."""
from __future__ import annotations

from typing import Protocol

from telegram import Bot
from telegram.error import TelegramError

from saldo_core.errors import GatewaySendError


class MessageGateway(Protocol):
    async def send_message(self, chat_id: int, text: str) -> None:
        ...


class TelegramGateway:
    """Delivers plain-text messages through a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=chat_id, text=text)
        except TelegramError as exc:
            raise GatewaySendError(f"Telegram send to chat {chat_id} failed: {exc}") from exc
