from decimal import Decimal
from typing import Dict, List, Tuple, Union

import pytest

from saldo_core.clients.lunchcheck import CardReading
from saldo_core.errors import GatewaySendError, SourceUnavailable


class FakeGateway:
    def __init__(self, fail_for=()):
        self.sent: List[Tuple[int, str]] = []
        self._fail_for = set(fail_for)

    async def send_message(self, chat_id, text):
        if chat_id in self._fail_for:
            raise GatewaySendError(f"chat {chat_id} blocked the bot")
        self.sent.append((chat_id, text))


class FakeSource:
    """Balance source answering from a dict; exceptions in the dict are raised."""

    def __init__(self, readings: Dict[str, Union[CardReading, Exception]] = None):
        self.readings = dict(readings or {})
        self.calls: List[str] = []

    async def fetch(self, card_number):
        self.calls.append(card_number)
        value = self.readings.get(card_number)
        if value is None:
            raise SourceUnavailable(f"no such card {card_number}")
        if isinstance(value, Exception):
            raise value
        return value


def reading(balance: str, active: bool = True) -> CardReading:
    return CardReading(balance=Decimal(balance), is_active=active)


@pytest.fixture
def make_reading():
    return reading


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def source():
    return FakeSource()
