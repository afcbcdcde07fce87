"""Tests for the event publisher and its handlers."""

from __future__ import annotations

import httpx
import pytest

from mindflow.config import Settings
from mindflow.models import (
    ContextCategory,
    EngineEvent,
    LevelChanged,
    Mode,
    Suggestion,
    SuggestionKind,
)
from mindflow.notifications import CallbackHandler, EventHandler, EventPublisher, create_publisher
from mindflow.notifications.handlers import LogHandler, WebhookHandler


def _level_event(level: int = 1) -> LevelChanged:
    return LevelChanged(
        session_id="S001",
        mode=Mode.STANDARD,
        level=level,
        previous_level=0,
        score=52.0,
        entropy=0.4,
        in_flow_band=True,
        category=ContextCategory.SOCIAL,
        timestamp=4000.0,
    )


class _FailingHandler(EventHandler):
    name = "failing"

    async def send(self, event: EngineEvent) -> bool:
        raise ConnectionError("consumer gone")


class _RefusingHandler(EventHandler):
    name = "refusing"

    async def send(self, event: EngineEvent) -> bool:
        return False


class TestEventPublisher:
    @pytest.mark.asyncio
    async def test_default_handler_is_log(self):
        publisher = EventPublisher()
        assert publisher.handler_names == ["log"]
        result = await publisher.publish(_level_event())
        assert result.all_ok
        assert result.sent == ["log"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        received: list[EngineEvent] = []
        publisher = EventPublisher(
            handlers=[_FailingHandler(), CallbackHandler(received.append), _RefusingHandler()]
        )
        event = _level_event()
        result = await publisher.publish(event)

        assert received == [event]
        assert result.sent == ["callback"]
        assert result.failed == ["failing", "refusing"]
        assert not result.all_ok

    @pytest.mark.asyncio
    async def test_async_callback(self):
        received: list[EngineEvent] = []

        async def _collect(event: EngineEvent) -> None:
            received.append(event)

        publisher = EventPublisher(handlers=[CallbackHandler(_collect, name="async")])
        events = [_level_event(1), _level_event(2)]
        results = await publisher.publish_many(events)
        assert received == events
        assert all(r.all_ok for r in results)

    @pytest.mark.asyncio
    async def test_should_handle_filter(self):
        class _LevelOnly(CallbackHandler):
            def should_handle(self, event: EngineEvent) -> bool:
                return isinstance(event, LevelChanged)

        received: list[EngineEvent] = []
        publisher = EventPublisher(handlers=[_LevelOnly(received.append)])
        suggestion = Suggestion(session_id="S001", score=70.0, kind=SuggestionKind.GENTLE, timestamp=1.0)
        result = await publisher.publish(suggestion)
        assert received == []
        assert result.sent == []

    def test_add_remove_handlers(self):
        publisher = EventPublisher(handlers=[])
        publisher.add_handler(LogHandler())
        publisher.add_handler(CallbackHandler(print, name="printer"))
        assert publisher.handler_names == ["log", "printer"]
        assert publisher.remove_handler("printer") is True
        assert publisher.remove_handler("printer") is False
        assert publisher.handler_names == ["log"]


class TestWebhookHandler:
    @pytest.mark.asyncio
    async def test_unreachable_webhook_returns_false(self):
        handler = WebhookHandler("http://127.0.0.1:9/hook", timeout=0.5)
        assert await handler.send(_level_event()) is False

    @pytest.mark.asyncio
    async def test_posts_event_json(self, monkeypatch: pytest.MonkeyPatch):
        captured: dict = {}

        def _respond(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = request.read()
            return httpx.Response(204)

        transport = httpx.MockTransport(_respond)
        original = httpx.AsyncClient

        def _client(*args, **kwargs):
            return original(*args, transport=transport, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", _client)

        event = _level_event()
        assert await WebhookHandler("http://hooks.test/mindflow").send(event) is True
        assert captured["url"] == "http://hooks.test/mindflow"
        assert event.id.encode() in captured["body"]


def test_create_publisher_from_settings():
    assert create_publisher(Settings(webhook_url="")).handler_names == ["log"]
    publisher = create_publisher(Settings(webhook_url="http://hooks.test/x"))
    assert publisher.handler_names == ["log", "webhook"]
