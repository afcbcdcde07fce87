"""Tests for the per-session WebSocket fan-out."""

from __future__ import annotations

from typing import Any

import pytest

from mindflow.api.websocket import ConnectionManager, WebSocketHandler
from mindflow.models import ContextCategory, LevelChanged, Mode
from mindflow.notifications.handlers import EventPublisher


class _FakeSocket:
    def __init__(self, *, broken: bool = False) -> None:
        self.accepted = False
        self.sent: list[dict[str, Any]] = []
        self.broken = broken

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def _event(session_id: str) -> LevelChanged:
    return LevelChanged(
        session_id=session_id,
        mode=Mode.STANDARD,
        level=2,
        previous_level=1,
        score=66.0,
        entropy=0.5,
        in_flow_band=False,
        category=ContextCategory.OTHER,
        timestamp=1.0,
    )


@pytest.mark.asyncio
async def test_events_routed_to_session_channel():
    manager = ConnectionManager()
    mine, other, everything = _FakeSocket(), _FakeSocket(), _FakeSocket()
    await manager.connect(mine, "tab-1")
    await manager.connect(other, "tab-2")
    await manager.connect(everything, "all")

    publisher = EventPublisher(handlers=[WebSocketHandler(manager)])
    result = await publisher.publish(_event("tab-1"))

    assert result.sent == ["websocket"]
    assert mine.accepted
    assert [m["level"] for m in mine.sent] == [2]
    assert other.sent == []
    assert everything.sent[0]["session_id"] == "tab-1"


@pytest.mark.asyncio
async def test_dead_sockets_are_dropped():
    manager = ConnectionManager()
    broken = _FakeSocket(broken=True)
    await manager.connect(broken, "tab-1")
    assert manager.client_count == 1

    delivered = await manager.broadcast_event(_event("tab-1"))
    assert delivered == 0
    assert manager.client_count == 0
    assert manager.channel_breakdown() == {}
