import asyncio
from decimal import Decimal

import httpx
import pytest

from saldo_core.clients.lunchcheck import LunchCheckClient, parse_balance_page
from saldo_core.errors import ParseError, SourceUnavailable

PAGE = """
<html><body>
<table>
  <tr><td>Kontostand</td><td>
      12.50 CHF</td></tr>
  <tr><td>Kartenstatus</td><td><b>{status}</b></td></tr>
</table>
</body></html>
"""


def test_parse_balance_page_active():
    result = parse_balance_page(PAGE.format(status="aktiv"))
    assert result.balance == Decimal("12.50")
    assert result.is_active is True


def test_parse_balance_page_other_labels_are_inactive():
    assert parse_balance_page(PAGE.format(status="gesperrt")).is_active is False
    assert parse_balance_page(PAGE.format(status="Aktiv")).is_active is False
    assert parse_balance_page(PAGE.format(status="active")).is_active is False


def test_parse_balance_page_grouping_and_comma():
    page = "Kontostand: 1'234,05 CHF ... Kartenstatus <b>aktiv</b>"
    assert parse_balance_page(page).balance == Decimal("1234.05")


def test_parse_balance_page_rejects_unexpected_body():
    with pytest.raises(ParseError):
        parse_balance_page("<html>Karte nicht gefunden</html>")
    with pytest.raises(ParseError):
        parse_balance_page("Kontostand 12.50 CHF but no status")


def _client(handler):
    session = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LunchCheckClient("https://saldo.test/saldo.aspx?crd=", session=session), session


def test_fetch_requests_card_url():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, text=PAGE.format(status="aktiv"))

    async def _run():
        client, session = _client(handler)
        try:
            return await client.fetch("1234567890123456")
        finally:
            await session.aclose()

    result = asyncio.run(_run())
    assert seen == ["https://saldo.test/saldo.aspx?crd=1234567890123456"]
    assert result.balance == Decimal("12.50")
    assert result.is_active is True


def test_fetch_http_error_is_source_unavailable():
    async def _run():
        client, session = _client(lambda request: httpx.Response(503, text="down"))
        try:
            await client.fetch("1234567890123456")
        finally:
            await session.aclose()

    with pytest.raises(SourceUnavailable):
        asyncio.run(_run())


def test_fetch_network_error_is_source_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def _run():
        client, session = _client(handler)
        try:
            await client.fetch("1234567890123456")
        finally:
            await session.aclose()

    with pytest.raises(SourceUnavailable):
        asyncio.run(_run())


def test_fetch_unexpected_body_is_parse_error():
    async def _run():
        client, session = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        try:
            await client.fetch("1234567890123456")
        finally:
            await session.aclose()

    with pytest.raises(ParseError):
        asyncio.run(_run())


def test_aclose_leaves_injected_session_open():
    async def _run():
        client, session = _client(lambda request: httpx.Response(200, text=""))
        await client.aclose()
        closed = session.is_closed
        await session.aclose()
        return closed

    assert asyncio.run(_run()) is False
