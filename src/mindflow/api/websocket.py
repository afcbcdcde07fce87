"""WebSocket connection manager — stream engine events to per-session subscribers."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import WebSocket

from mindflow.notifications.handlers import EventHandler

if TYPE_CHECKING:
    from mindflow.models import EngineEvent

logger = structlog.get_logger(__name__)


# ── Streaming statistics ─────────────────────────────────────

@dataclass
class StreamStats:
    """Aggregate outbound statistics for the health endpoint."""
    total_outbound: int = 0
    per_channel: dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)

    # Rolling throughput tracking (last 300 sends)
    _outbound_ts: deque = field(default_factory=lambda: deque(maxlen=300))

    def record_outbound(self, channel: str) -> None:
        self.total_outbound += 1
        self._outbound_ts.append(time.monotonic())
        self.per_channel[channel] = self.per_channel.get(channel, 0) + 1

    def outbound_rate(self, window: float = 60.0) -> float:
        """Messages per second over the last *window* seconds."""
        cutoff = time.monotonic() - window
        count = sum(1 for t in self._outbound_ts if t > cutoff)
        return count / window

    def snapshot(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(time.monotonic() - self.started_at),
            "total_outbound": self.total_outbound,
            "outbound_rate_per_sec": round(self.outbound_rate(), 2),
            "channels": dict(self.per_channel),
        }


class ConnectionManager:
    """Manage WebSocket connections grouped by session channel.

    A client subscribes to one session id (or ``"all"``); every event of
    that session is sent to it as JSON.
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self.stats = StreamStats()

    # ── Connection lifecycle ──────────────────────────────────

    async def connect(self, ws: WebSocket, channel: str = "all") -> None:
        """Accept a WebSocket and subscribe it to *channel*."""
        await ws.accept()
        async with self._lock:
            self._connections.setdefault(channel, []).append(ws)
        logger.info("ws.connected", channel=channel, total=self.client_count)

    async def disconnect(self, ws: WebSocket) -> None:
        """Remove a WebSocket from every channel."""
        async with self._lock:
            for subs in self._connections.values():
                if ws in subs:
                    subs.remove(ws)
            self._connections = {ch: subs for ch, subs in self._connections.items() if subs}
        logger.info("ws.disconnected", total=self.client_count)

    @property
    def client_count(self) -> int:
        return sum(len(subs) for subs in self._connections.values())

    def channel_breakdown(self) -> dict[str, int]:
        """Return number of subscribers per channel."""
        return {ch: len(subs) for ch, subs in self._connections.items() if subs}

    # ── Broadcasting ──────────────────────────────────────────

    async def broadcast(self, message: dict[str, Any], channel: str) -> int:
        """Send a JSON message to every subscriber of *channel*.

        Dead connections are dropped; returns the number of successful sends.
        """
        targets = list(self._connections.get(channel, []))
        if not targets:
            return 0

        dead: list[WebSocket] = []
        delivered = 0
        for ws in targets:
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception:
                dead.append(ws)

        self.stats.record_outbound(channel)
        for ws in dead:
            await self.disconnect(ws)
        return delivered

    async def broadcast_event(self, event: EngineEvent) -> int:
        """Send an engine event to its session channel and to ``"all"``."""
        msg = event.model_dump(mode="json")
        delivered = await self.broadcast(msg, event.session_id)
        delivered += await self.broadcast(msg, "all")
        return delivered


class WebSocketHandler(EventHandler):
    """Publisher channel that forwards events to WebSocket subscribers."""

    name = "websocket"

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def send(self, event: EngineEvent) -> bool:
        await self._manager.broadcast_event(event)
        return True


# ── Shared instance ──────────────────────────────────────────

ws_manager = ConnectionManager()
