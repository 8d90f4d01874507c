"""Bot command and update handling tests."""
import asyncio

import pytest

from telewind.bot.commands import registry
from telewind.bot.handlers import BotHandler, extract_command
from telewind.bot.service import BotService
from telewind.config import ServiceConfig
from telewind.errors import StorageUnavailable


def _reply(handler, chat_id, text, chat_type="private"):
    return asyncio.run(handler.handle_message(chat_id, text, chat_type))


def test_extract_command():
    assert extract_command("/Subscribe@telewind_bot now") == "/subscribe"
    assert extract_command("/help") == "/help"
    assert extract_command("   ") == ""


def test_registry_has_commands():
    triggers = {"/subscribe", "/unsubscribe", "/help", "/start"}
    assert all(registry.get_handler(t) is not None for t in triggers)
    assert registry.get_handler("/start") is registry.get_handler("/help")
    assert len(registry.get_all_handlers()) == 3


def test_subscribe_and_unsubscribe(store):
    handler = BotHandler(store)

    assert _reply(handler, 42, "/subscribe") == "You are subscribed successfully!"
    assert store.is_subscribed(42)
    assert _reply(handler, 42, "/subscribe") == "You are already subscribed"

    assert _reply(handler, 42, "/unsubscribe") == "You are unsubscribed"
    assert not store.is_subscribed(42)
    assert _reply(handler, 42, "/unsubscribe") == "You are not subscribed"


def test_help_lists_commands(store):
    text = _reply(BotHandler(store), 1, "/start")
    assert "/subscribe" in text
    assert "/unsubscribe" in text


def test_group_chats_and_plain_text_ignored(store):
    handler = BotHandler(store)
    assert _reply(handler, 42, "/subscribe", chat_type="group") is None
    assert _reply(handler, 42, "hello") is None
    assert _reply(handler, 42, "") is None
    assert not store.is_subscribed(42)


def test_storage_failure_reply():
    class BrokenStore:
        def subscribe(self, user_id):
            raise StorageUnavailable("database is locked")

    reply = _reply(BotHandler(BrokenStore()), 42, "/subscribe")
    assert reply == "Something went wrong, please try again later"


class FakeClient:
    def __init__(self):
        self.sent = []

    async def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))
        return {}

    async def close(self):
        pass


@pytest.fixture
def service(engine):
    cfg = ServiceConfig(TELEGRAM_BOT_TOKEN="test-token", WORKER_COUNT=1)
    return BotService(cfg, engine=engine, client=FakeClient())


def test_handle_update_replies_in_private_chat(service):
    update = {"update_id": 1, "message": {"chat": {"id": 5, "type": "private"}, "text": "/subscribe"}}
    asyncio.run(service.handle_update(update))

    assert service.store.is_subscribed(5)
    assert service.client.sent == [(5, "You are subscribed successfully!")]


def test_handle_update_ignores_non_text(service):
    asyncio.run(service.handle_update({"update_id": 2, "message": {"chat": {"id": 5, "type": "private"}}}))
    asyncio.run(service.handle_update({"update_id": 3}))
    assert service.client.sent == []


class ScriptedUpdatesClient(FakeClient):
    """getUpdates replies taken from a script; an exception entry is raised."""

    def __init__(self, script, on_exhausted):
        super().__init__()
        self.script = list(script)
        self.on_exhausted = on_exhausted
        self.offsets = []

    async def get_updates(self, offset=None):
        self.offsets.append(offset)
        if not self.script:
            self.on_exhausted()
            return []
        outcome = self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def test_updates_loop_survives_unexpected_errors(engine, monkeypatch):
    monkeypatch.setattr("telewind.bot.service.UPDATES_RETRY_SECONDS", 0)
    subscribe = {"update_id": 10, "message": {"chat": {"id": 8, "type": "private"}, "text": "/subscribe"}}

    async def go():
        service = BotService(
            ServiceConfig(TELEGRAM_BOT_TOKEN="test-token"),
            engine=engine,
            client=FakeClient(),
        )
        service._shutdown = asyncio.Event()
        service.client = ScriptedUpdatesClient(
            [AttributeError("'NoneType' object has no attribute 'get'"), [subscribe]],
            on_exhausted=service._shutdown.set,
        )
        await asyncio.wait_for(service._updates_loop(), timeout=5)
        return service

    service = asyncio.run(go())
    assert service.store.is_subscribed(8)
    assert service.client.sent == [(8, "You are subscribed successfully!")]
    assert service.client.offsets == [None, None, 11]


def test_event_loop_restarts_after_failure(service, monkeypatch):
    monkeypatch.setattr("telewind.bot.service.RESTART_DELAY_SECONDS", 0)
    runs = []

    async def flaky_run(source, shutdown_event):
        runs.append(1)
        if len(runs) == 1:
            raise RuntimeError("anemometer page changed")
        shutdown_event.set()

    service.scheduler.run = flaky_run

    async def go():
        service._shutdown = asyncio.Event()
        await asyncio.wait_for(service._event_loop(), timeout=5)

    asyncio.run(go())
    assert len(runs) == 2
