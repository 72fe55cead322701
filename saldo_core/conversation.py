"""Per-chat conversation state: decides what an incoming text means."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from saldo_core.clients.telegram_gateway import MessageGateway
from saldo_core.errors import GatewaySendError
from saldo_core.services.messages import text as _text
from saldo_core.services.monitoring import MonitoringEngine


LOGGER = logging.getLogger(__name__)


class PendingAction(Enum):
    NONE = "none"
    AWAITING_CARD_NUMBER = "awaiting_card_number"


COMMANDS = ("/start", "/about", "/newcard", "/cancel")


class ConversationRouter:
    """Routes chat texts to commands or to the pending ``/newcard`` payload.

    Pending actions live in memory only: a restart drops an open
    "send me your card" prompt.
    """

    def __init__(self, engine: MonitoringEngine, gateway: MessageGateway) -> None:
        self._engine = engine
        self._gateway = gateway
        self._pending: Dict[int, PendingAction] = {}
        self._chat_locks: Dict[int, asyncio.Lock] = {}
        self._lock_users: Dict[int, int] = {}

    def state(self, chat_id: int) -> PendingAction:
        return self._pending.get(chat_id, PendingAction.NONE)

    def _acquire_lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = self._chat_locks[chat_id] = asyncio.Lock()
        self._lock_users[chat_id] = self._lock_users.get(chat_id, 0) + 1
        return lock

    def _release_lock(self, chat_id: int) -> None:
        users = self._lock_users.pop(chat_id) - 1
        if users:
            self._lock_users[chat_id] = users
        else:
            # Last queued text for this chat is done.
            del self._chat_locks[chat_id]

    async def handle_text(self, chat_id: int, text: Optional[str], chat_metadata: Optional[Mapping[str, Any]] = None) -> None:
        if text is None:
            return
        lock = self._acquire_lock(chat_id)
        try:
            async with lock:
                if text in COMMANDS:
                    await self._command(chat_id, text)
                elif self.state(chat_id) is PendingAction.AWAITING_CARD_NUMBER:
                    await self._card_payload(chat_id, text, chat_metadata)
        finally:
            self._release_lock(chat_id)

    async def _command(self, chat_id: int, command: str) -> None:
        if command == "/newcard":
            self._pending[chat_id] = PendingAction.AWAITING_CARD_NUMBER
            await self._reply(chat_id, _text("newcard.prompt"))
        elif command == "/cancel":
            self._pending.pop(chat_id, None)
            await self._reply(chat_id, _text("cancel"))
        elif command == "/about":
            await self._reply(chat_id, _text("about"))
        elif command == "/start":
            await self._reply(chat_id, _text("start"))

    async def _card_payload(self, chat_id: int, txt: str, chat_metadata: Optional[Mapping[str, Any]]) -> None:
        result = await self._engine.register(chat_id, txt, chat_metadata)
        if not result.ok:
            await self._reply(chat_id, _text("newcard.invalid"))
            return
        self._pending.pop(chat_id, None)
        if not result.added:
            await self._reply(chat_id, _text("newcard.duplicate"))

    async def _reply(self, chat_id: int, message: str) -> None:
        try:
            await self._gateway.send_message(chat_id, message)
        except GatewaySendError as exc:
            LOGGER.warning("reply to chat %s not delivered: %s", chat_id, exc)
