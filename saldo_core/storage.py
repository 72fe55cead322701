"""In-memory chat/card store with JSON snapshots on disk."""
from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple, Final

from saldo_core.errors import PersistenceLoadError, PersistenceWriteError
from saldo_core.telemetry import timed

LOGGER = logging.getLogger(__name__)

SNAPSHOT_VERSION: Final[int] = 1
_CENTS = Decimal("0.01")


def to_balance(value: Any) -> Decimal:
    """Coerce a stored/parsed balance into a two-decimal ``Decimal``."""
    try:
        return Decimal(str(value)).quantize(_CENTS)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid balance: {value!r}") from exc


@dataclass(slots=True)
class Card:
    card_number: str
    last_balance: Decimal
    is_active: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "card_number": self.card_number,
            "last_balance": str(self.last_balance),
            "is_active": self.is_active,
        }


def _empty_cards() -> Dict[str, Card]:
    return {}


def _empty_chat() -> Dict[str, Any]:
    return {}


@dataclass(slots=True)
class ChatRecord:
    chat_id: int
    chat: Dict[str, Any] = field(default_factory=_empty_chat)
    cards: Dict[str, Card] = field(default_factory=_empty_cards)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chat": self.chat,
            "cards": [card.to_dict() for card in self.cards.values()],
        }


class Store:
    """Mapping ``chat_id -> ChatRecord`` behind one store-wide lock.

    The lock only guards in-memory work and is never held across an ``await``,
    so the scan, the inbound handlers and the snapshot job can share it from
    the event loop or from worker threads.
    """

    def __init__(self, chats: Optional[Dict[int, ChatRecord]] = None) -> None:
        self._chats: Dict[int, ChatRecord] = dict(chats or {})
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._chats)

    def chat_ids(self) -> List[int]:
        with self._lock:
            return list(self._chats)

    def chat(self, chat_id: int) -> Optional[ChatRecord]:
        with self._lock:
            return self._chats.get(int(chat_id))

    def cards(self, chat_id: int) -> List[Card]:
        """Copies of the chat's cards in registration order."""
        with self._lock:
            record = self._chats.get(int(chat_id))
            if record is None:
                return []
            return [replace(card) for card in record.cards.values()]

    def card_refs(self) -> List[Tuple[int, str]]:
        with self._lock:
            return [(chat_id, number) for chat_id, record in self._chats.items() for number in record.cards]

    def get_or_create(self, chat_id: int, metadata_if_new: Optional[Mapping[str, Any]] = None) -> ChatRecord:
        with self._lock:
            return self._get_or_create(chat_id, metadata_if_new)

    def add_card_if_absent(self, record: ChatRecord, card: Card) -> bool:
        with self._lock:
            return self._add_card(record, card)

    def register_card(self, chat_id: int, metadata: Optional[Mapping[str, Any]], card: Card) -> bool:
        """Get-or-create the chat and add the card under a single lock hold."""
        with self._lock:
            record = self._get_or_create(chat_id, metadata)
            return self._add_card(record, card)

    def apply_reading(self, chat_id: int, card_number: str, balance: Decimal, is_active: bool) -> Optional[Card]:
        """Compare-and-update one card; returns a copy when the stored values changed."""
        with self._lock:
            record = self._chats.get(int(chat_id))
            card = record.cards.get(card_number) if record else None
            if card is None:
                return None
            if card.last_balance == balance and card.is_active == is_active:
                return None
            card.last_balance = balance
            card.is_active = is_active
            return replace(card)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "version": SNAPSHOT_VERSION,
                "chats": {str(chat_id): record.to_dict() for chat_id, record in self._chats.items()},
            }

    def snapshot(self) -> bytes:
        payload = self.to_dict()
        return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True).encode("utf-8")

    def _get_or_create(self, chat_id: int, metadata: Optional[Mapping[str, Any]]) -> ChatRecord:
        chat_id = int(chat_id)
        record = self._chats.get(chat_id)
        if record is None:
            record = ChatRecord(chat_id=chat_id, chat=dict(metadata or {}))
            self._chats[chat_id] = record
        elif metadata:
            record.chat = dict(metadata)
        return record

    @staticmethod
    def _add_card(record: ChatRecord, card: Card) -> bool:
        if card.card_number in record.cards:
            return False
        record.cards[card.card_number] = card
        return True


def _card_from_dict(raw: Mapping[str, Any]) -> Card:
    # Legacy snapshots use PascalCase keys and a float "LastSaldo".
    number = raw.get("card_number", raw.get("CardNumber"))
    balance = raw.get("last_balance", raw.get("LastSaldo", 0))
    active = raw.get("is_active", raw.get("IsActive", False))
    if not isinstance(number, str) or not number:
        raise ValueError(f"card without number: {raw!r}")
    if not isinstance(active, bool):
        raise ValueError(f"card {number}: is_active is not a boolean: {active!r}")
    return Card(card_number=number, last_balance=to_balance(balance), is_active=active)


def _chat_from_dict(chat_id: int, raw: Mapping[str, Any]) -> ChatRecord:
    chat = raw.get("chat", raw.get("Chat")) or {}
    if not isinstance(chat, dict):
        raise ValueError(f"chat {chat_id}: metadata is not an object")
    record = ChatRecord(chat_id=chat_id, chat=dict(chat))
    for raw_card in raw.get("cards", raw.get("Cards")) or []:
        card = _card_from_dict(raw_card)
        record.cards.setdefault(card.card_number, card)
    return record


def decode_snapshot(data: bytes | str) -> Store:
    """Strict decoder; raises ``PersistenceLoadError`` for anything malformed."""
    try:
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError("snapshot root is not an object")
        if "chats" in payload:
            chats_raw = payload["chats"]
        elif "ChatData" in payload:
            chats_raw = payload["ChatData"]
        else:
            # First release stored the bare chat mapping.
            chats_raw = payload
        if not isinstance(chats_raw, dict):
            raise ValueError("chats is not an object")
        chats: Dict[int, ChatRecord] = {}
        for key, raw in chats_raw.items():
            chat_id = int(key)
            if not isinstance(raw, dict):
                raise ValueError(f"chat {key}: not an object")
            chats[chat_id] = _chat_from_dict(chat_id, raw)
    except (ValueError, TypeError, AttributeError) as exc:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors.
        raise PersistenceLoadError(f"invalid snapshot: {exc}") from exc
    return Store(chats)


def load(data: Optional[bytes | str]) -> Store:
    """Decode a snapshot, falling back to an empty store on any failure."""
    if not data:
        return Store()
    try:
        return decode_snapshot(data)
    except PersistenceLoadError as exc:
        LOGGER.warning("snapshot unreadable, starting with an empty store: %s", exc)
        return Store()


def load_from_file(path: str | os.PathLike[str]) -> Store:
    src = Path(path)
    try:
        data = src.read_bytes()
    except FileNotFoundError:
        LOGGER.info("no snapshot at %s, creating new store", src)
        return Store()
    except OSError as exc:
        LOGGER.warning("snapshot %s unreadable, starting with an empty store: %s", src, exc)
        return Store()
    store = load(data)
    LOGGER.info("restored %d chat(s) from %s", len(store), src)
    return store


def write_snapshot(path: str | os.PathLike[str], data: bytes) -> None:
    """Atomically replace ``path`` with ``data`` (tmp file + ``os.replace``)."""
    dst = Path(path)
    tmp_path = dst.with_name(dst.name + ".tmp")
    try:
        if dst.parent and not dst.parent.exists():
            dst.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, dst)
    except OSError as exc:
        raise PersistenceWriteError(f"error when writing file {dst}: {exc}") from exc


class SnapshotWriter:
    """Periodically invoked flush of a ``Store`` to its snapshot file."""

    def __init__(self, store: Store, path: str | os.PathLike[str]) -> None:
        self._store = store
        self._path = Path(path)
        self._last_written: Optional[bytes] = None

    async def flush(self) -> bool:
        """Write the current store if it changed since the last successful write.

        Returns False when the write failed; the failure is logged and the next
        call tries again.
        """
        with timed("store.flush", path=str(self._path)) as fields:
            data = self._store.snapshot()
            if data == self._last_written:
                fields["written"] = 0
                return True
            try:
                await asyncio.to_thread(write_snapshot, self._path, data)
            except PersistenceWriteError as exc:
                LOGGER.error("%s", exc)
                return False
            self._last_written = data
            fields["written"] = len(data)
        return True
