import asyncio

from saldo_core.conversation import ConversationRouter, PendingAction
from saldo_core.services.messages import text
from saldo_core.services.monitoring import MonitoringEngine
from saldo_core.storage import Store

CARD = "1234567890123456"


def _router(gateway, source, store=None):
    store = store if store is not None else Store()
    engine = MonitoringEngine(store, source, gateway)
    return ConversationRouter(engine, gateway), store


def _feed(router, chat_id, *texts):
    async def _run():
        for txt in texts:
            await router.handle_text(chat_id, txt, {"id": chat_id, "type": "private"})

    asyncio.run(_run())


def test_newcard_bad_text_cancel(gateway, source):
    router, store = _router(gateway, source)

    _feed(router, 1, "/newcard", "bad text", "/cancel")

    assert router.state(1) is PendingAction.NONE
    assert len(store) == 0
    assert [msg for _, msg in gateway.sent] == [
        text("newcard.prompt"),
        text("newcard.invalid"),
        text("cancel"),
    ]


def test_newcard_then_valid_card_registers(gateway, source, make_reading):
    source.readings[CARD] = make_reading("15.00", True)
    router, store = _router(gateway, source)

    _feed(router, 1, "/newcard", "1234 5678 9012 3456")

    assert router.state(1) is PendingAction.NONE
    assert [c.card_number for c in store.cards(1)] == [CARD]
    assert gateway.sent[-1] == (1, "Saldo: 15.00\nActive: True")


def test_invalid_card_keeps_waiting(gateway, source, make_reading):
    router, store = _router(gateway, source)

    _feed(router, 1, "/newcard", "1234-5678", "still wrong")
    assert router.state(1) is PendingAction.AWAITING_CARD_NUMBER

    source.readings[CARD] = make_reading("1.00", False)
    _feed(router, 1, CARD)
    assert router.state(1) is PendingAction.NONE
    assert len(store.cards(1)) == 1


def test_unreachable_source_reported_as_invalid(gateway, source):
    router, store = _router(gateway, source)

    _feed(router, 1, "/newcard", CARD)

    assert router.state(1) is PendingAction.AWAITING_CARD_NUMBER
    assert gateway.sent[-1] == (1, text("newcard.invalid"))
    assert len(store) == 0


def test_duplicate_registration_is_reported(gateway, source, make_reading):
    source.readings[CARD] = make_reading("3.00", True)
    router, store = _router(gateway, source)

    _feed(router, 1, "/newcard", CARD, "/newcard", CARD)

    assert len(store.cards(1)) == 1
    assert gateway.sent[-1] == (1, text("newcard.duplicate"))


def test_idle_text_is_ignored(gateway, source):
    router, _ = _router(gateway, source)

    _feed(router, 1, "hello", CARD, "/unknown", "/NEWCARD")

    assert gateway.sent == []
    assert source.calls == []
    assert router.state(1) is PendingAction.NONE


def test_info_commands_do_not_change_state(gateway, source):
    router, _ = _router(gateway, source)

    _feed(router, 1, "/start", "/newcard", "/about")

    assert router.state(1) is PendingAction.AWAITING_CARD_NUMBER
    assert [msg for _, msg in gateway.sent] == [text("start"), text("newcard.prompt"), text("about")]


def test_pending_state_is_per_chat(gateway, source, make_reading):
    source.readings[CARD] = make_reading("8.00", True)
    router, store = _router(gateway, source)

    _feed(router, 1, "/newcard")
    _feed(router, 2, CARD)

    assert router.state(1) is PendingAction.AWAITING_CARD_NUMBER
    assert len(store) == 0


def test_commands_must_match_exactly(gateway, source):
    router, _ = _router(gateway, source)

    _feed(router, 1, "/newcard ", "/NEWCARD")
    assert router.state(1) is PendingAction.NONE
    assert gateway.sent == []

    _feed(router, 1, "/newcard", "/cancel\n")
    assert router.state(1) is PendingAction.AWAITING_CARD_NUMBER
    assert [msg for _, msg in gateway.sent] == [text("newcard.prompt"), text("newcard.invalid")]


def test_chat_locks_are_released(gateway, source, make_reading):
    source.readings[CARD] = make_reading("1.00", True)
    router, store = _router(gateway, source)

    async def _run():
        await router.handle_text(1, "/newcard")
        await asyncio.gather(
            router.handle_text(1, CARD),
            router.handle_text(1, "/about"),
            router.handle_text(2, "hello"),
        )

    asyncio.run(_run())

    assert len(store.cards(1)) == 1
    assert router._chat_locks == {}
    assert router._lock_users == {}
