"""Event delivery — best-effort fan-out of engine events to consumers.

Architecture
~~~~~~~~~~~~
* **EventHandler** — abstract base for delivery channels.
* **LogHandler / WebhookHandler / CallbackHandler** — concrete channels.
* **EventPublisher** — fan-out with error isolation and results.
* **create_publisher()** — factory that wires handlers from settings.

Delivery semantics
~~~~~~~~~~~~~~~~~~
Consumers (intervention executors, display surfaces) may disappear at any
time.  A failed delivery is logged and dropped: events are never queued,
retried or backed off, and a failing handler never affects the others or
the engine that produced the event.

Adding a new channel
~~~~~~~~~~~~~~~~~~~~
1. Subclass ``EventHandler``.
2. Implement ``async send(event) -> bool``.
3. Optionally set ``name`` and override ``should_handle``.
4. Register via ``publisher.add_handler(...)`` or add to the factory.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
import structlog

from mindflow.models import LevelChanged

if TYPE_CHECKING:
    from mindflow.config import Settings
    from mindflow.models import EngineEvent

logger = structlog.get_logger(__name__)


# ── Publish result ────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PublishResult:
    """Outcome summary for a single ``publish()`` call."""

    event_id: str | None
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0


# ── Abstract handler ──────────────────────────────────────────


class EventHandler(ABC):
    """Contract for event delivery channels."""

    name: str = "base"

    @abstractmethod
    async def send(self, event: EngineEvent) -> bool:
        """Deliver an event.  Return ``True`` on success."""

    def should_handle(self, event: EngineEvent) -> bool:  # noqa: ARG002
        """Return ``False`` to skip this event (default: handle all)."""
        return True


# ── Concrete handlers ────────────────────────────────────────


class LogHandler(EventHandler):
    """Write events to the structured log (always enabled)."""

    name = "log"

    async def send(self, event: EngineEvent) -> bool:
        if isinstance(event, LevelChanged):
            logger.info(
                "events.level_changed",
                session=event.session_id,
                level=event.level,
                previous=event.previous_level,
                mode=event.mode.value,
                score=round(event.score, 2),
            )
        else:
            logger.info(
                "events.suggestion",
                session=event.session_id,
                kind=event.kind.value,
                score=round(event.score, 2),
            )
        return True


class WebhookHandler(EventHandler):
    """POST event JSON to an external webhook URL."""

    name = "webhook"

    def __init__(self, url: str, *, timeout: float = 5.0) -> None:
        self._url = url
        self._timeout = timeout

    async def send(self, event: EngineEvent) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=event.model_dump(mode="json"))
                resp.raise_for_status()
            logger.debug("events.webhook_sent", url=self._url, event_id=event.id)
            return True
        except Exception as exc:
            logger.warning("events.webhook_failed", url=self._url, error=str(exc))
            return False


class CallbackHandler(EventHandler):
    """Invoke an in-process callable (sync or async) with each event."""

    def __init__(
        self,
        fn: Callable[[EngineEvent], Any] | Callable[[EngineEvent], Awaitable[Any]],
        *,
        name: str = "callback",
    ) -> None:
        self._fn = fn
        self.name = name

    async def send(self, event: EngineEvent) -> bool:
        result = self._fn(event)
        if inspect.isawaitable(result):
            await result
        return True


# ── Publisher ─────────────────────────────────────────────────


class EventPublisher:
    """Fan-out events to registered handlers with error isolation.

    Each handler is invoked independently in registration order, so
    per-session event order is preserved for every consumer.
    """

    def __init__(self, *, handlers: list[EventHandler] | None = None) -> None:
        self._handlers: list[EventHandler] = handlers if handlers is not None else [LogHandler()]

    # ── Handler management ────────────────────────────────────

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, name: str) -> bool:
        """Remove the first handler matching *name*. Return ``True`` if found."""
        for i, h in enumerate(self._handlers):
            if h.name == name:
                self._handlers.pop(i)
                return True
        return False

    @property
    def handler_names(self) -> list[str]:
        return [h.name for h in self._handlers]

    # ── Publish ───────────────────────────────────────────────

    async def publish(self, event: EngineEvent) -> PublishResult:
        """Send *event* to every handler, collecting per-handler outcomes.

        Never raises: a handler that raises is logged and marked failed.
        """
        sent: list[str] = []
        failed: list[str] = []

        for handler in self._handlers:
            if not handler.should_handle(event):
                continue
            try:
                ok = await handler.send(event)
                (sent if ok else failed).append(handler.name)
            except Exception as exc:
                logger.warning(
                    "events.handler_error",
                    handler=handler.name,
                    event_id=event.id,
                    error=str(exc),
                )
                failed.append(handler.name)

        return PublishResult(event_id=event.id, sent=sent, failed=failed)

    async def publish_many(self, events: list[EngineEvent]) -> list[PublishResult]:
        """Publish a batch of events in order."""
        return [await self.publish(e) for e in events]


# ── Factory ───────────────────────────────────────────────────


def create_publisher(settings: Settings) -> EventPublisher:
    """Build an :class:`EventPublisher` wired from application settings.

    * **LogHandler** is always registered.
    * **WebhookHandler** is added when ``settings.webhook_url`` is non-empty.
    """
    publisher = EventPublisher()
    if settings.webhook_url:
        publisher.add_handler(
            WebhookHandler(settings.webhook_url, timeout=settings.webhook_timeout_seconds),
        )
    return publisher
