"""Session registry — lifecycle and 1 Hz scheduling of per-session engines.

Architecture
~~~~~~~~~~~~
The ``SessionRegistry`` owns a mapping ``session_id → live session`` where a
live session bundles one :class:`SignalAggregator`, one :class:`ScoreEngine`,
one periodic timer task and one :class:`asyncio.Lock`.  Every tick:

1. Reduces the aggregator windows (``peek``).
2. Advances the engine.
3. Publishes the tick's events (best-effort, in order).
4. Consumes the aggregator counters.
5. Schedules a best-effort snapshot write in the background.

All mutations of a session (ticks, raw events, context and mode signals,
score overrides, completion rebates) run under that session's lock, so a
tick never observes a half-applied signal.  A timer firing while another
tick of the same session is in flight is skipped.

Ending a session cancels its timer before anything else, evicts its state
and removes the persisted snapshot.  Signals for unknown sessions are
no-ops.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from mindflow.engine.config import EngineConfig
from mindflow.engine.score import ScoreEngine
from mindflow.errors import UnknownCategoryError
from mindflow.models import (
    ContextCategory,
    InteractionEvent,
    Mode,
    SessionSnapshot,
    TickOutput,
)
from mindflow.notifications.handlers import EventPublisher
from mindflow.signals.aggregator import SignalAggregator
from mindflow.signals.context import classify_url, parse_category
from mindflow.storage.repository import SnapshotRepository

logger = structlog.get_logger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class LiveSession:
    """Everything owned by one session for exactly its lifetime."""

    aggregator: SignalAggregator
    engine: ScoreEngine
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    timer: asyncio.Task | None = None
    persist_task: asyncio.Task | None = None
    in_flight: bool = False
    ticks: int = 0


class SessionRegistry:
    """Process-wide registry of live sessions.

    Integration::

        registry = SessionRegistry(config, publisher)
        registry.start_session("tab-1", url="https://news.example.com")
        await registry.record_interaction("tab-1", event)
        ...
        await registry.end_session("tab-1")
        await registry.shutdown()

    Parameters
    ----------
    config : EngineConfig | None
        Constant table shared by every session.
    publisher : EventPublisher | None
        Event fan-out; defaults to a log-only publisher.
    snapshot_repo : SnapshotRepository | None
        Best-effort persistence of per-session snapshots (disabled if None).
    clock : Callable[[], float] | None
        Epoch-millisecond clock, injectable for tests.
    start_timers : bool
        Start the periodic timer for each session.  Tests that step ticks
        by hand pass ``False``.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        publisher: EventPublisher | None = None,
        *,
        snapshot_repo: SnapshotRepository | None = None,
        clock: Callable[[], float] | None = None,
        start_timers: bool = True,
    ) -> None:
        self._config = config or EngineConfig()
        self._publisher = publisher or EventPublisher()
        self._snapshot_repo = snapshot_repo
        self._clock = clock or _wall_clock_ms
        self._start_timers = start_timers
        self._sessions: dict[str, LiveSession] = {}

        self._stats = {
            "sessions_started": 0,
            "sessions_ended": 0,
            "ticks": 0,
            "skipped_ticks": 0,
            "tick_errors": 0,
        }

    # ── Introspection ─────────────────────────────────────────

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def stats(self) -> dict[str, Any]:
        return {**self._stats, "live_sessions": len(self._sessions)}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> list[str]:
        return sorted(self._sessions)

    def has_timer(self, session_id: str) -> bool:
        live = self._sessions.get(session_id)
        return live is not None and live.timer is not None and not live.timer.done()

    def snapshot(self, session_id: str) -> SessionSnapshot | None:
        """Return the pull-based display snapshot, or ``None`` if unknown."""
        live = self._sessions.get(session_id)
        if live is None:
            return None
        return live.engine.snapshot()

    # ── Lifecycle ─────────────────────────────────────────────

    def start_session(
        self,
        session_id: str,
        *,
        category: ContextCategory | str | None = None,
        url: str | None = None,
    ) -> bool:
        """Create the session and its timer.  Idempotent: ``False`` if already live."""
        if session_id in self._sessions:
            return False
        # raises RuntimeError outside a running loop, before anything is registered
        loop = asyncio.get_running_loop() if self._start_timers else None

        resolved = self._resolve_category(session_id, category, url) or ContextCategory.OTHER
        now = self._clock()
        live = LiveSession(
            aggregator=SignalAggregator(self._config, session_id=session_id),
            engine=ScoreEngine(session_id, self._config, category=resolved, now=now),
        )
        if loop is not None:
            live.timer = loop.create_task(
                self._run_timer(session_id, live), name=f"mindflow-tick-{session_id}"
            )
        self._sessions[session_id] = live

        self._stats["sessions_started"] += 1
        logger.info(
            "registry.session_started",
            session=session_id,
            category=resolved.value,
            interval_ms=self._config.tick_interval_ms,
        )
        return True

    async def end_session(self, session_id: str) -> bool:
        """Tear down a session completely.  No-op (``False``) if unknown."""
        live = self._sessions.pop(session_id, None)
        if live is None:
            return False
        if live.timer is not None:
            live.timer.cancel()

        if live.persist_task is not None and not live.persist_task.done():
            await asyncio.gather(live.persist_task, return_exceptions=True)
        if self._snapshot_repo is not None:
            try:
                await self._snapshot_repo.delete(session_id)
            except Exception as exc:
                logger.warning("registry.snapshot_delete_failed", session=session_id, error=str(exc))

        self._stats["sessions_ended"] += 1
        logger.info("registry.session_ended", session=session_id, ticks=live.ticks)
        return True

    async def shutdown(self) -> None:
        """End every live session (timers first, then state and snapshots)."""
        for live in self._sessions.values():
            if live.timer is not None:
                live.timer.cancel()
        for session_id in list(self._sessions):
            await self.end_session(session_id)
        logger.info("registry.stopped")

    # ── Inputs ────────────────────────────────────────────────

    async def record_interaction(self, session_id: str, event: InteractionEvent) -> bool:
        """Feed a raw interaction to the session's aggregator."""
        live = self._sessions.get(session_id)
        if live is None:
            logger.debug("registry.unknown_session", session=session_id, signal="interaction")
            return False
        async with live.lock:
            return live.aggregator.observe(event)

    async def set_context(
        self,
        session_id: str,
        *,
        category: ContextCategory | str | None = None,
        url: str | None = None,
    ) -> bool:
        """Update the page category from an explicit category or a URL."""
        live = self._sessions.get(session_id)
        if live is None:
            logger.debug("registry.unknown_session", session=session_id, signal="context")
            return False
        resolved = self._resolve_category(session_id, category, url)
        if resolved is None:
            return False
        async with live.lock:
            live.engine.set_category(resolved)
        logger.info("registry.context_updated", session=session_id, category=resolved.value)
        return True

    async def set_mode(self, session_id: str, mode: Mode, active: bool) -> bool:
        """Raise or clear a mode lock; takes effect on the next tick."""
        live = self._sessions.get(session_id)
        if live is None:
            logger.debug("registry.unknown_session", session=session_id, signal="mode")
            return False
        async with live.lock:
            live.engine.set_mode(mode, active)
        return True

    async def complete(self, session_id: str, mode: Mode) -> bool:
        """Apply a completion signal; the therapy rebate lands before the next tick."""
        live = self._sessions.get(session_id)
        if live is None:
            logger.debug("registry.unknown_session", session=session_id, signal="complete")
            return False
        async with live.lock:
            with structlog.contextvars.bound_contextvars(session=session_id):
                event = live.engine.complete(mode, self._clock())
                if event is not None:
                    await self._publisher.publish(event)
            self._persist(session_id, live)
        return True

    async def set_score(self, session_id: str, value: float) -> TickOutput | None:
        """Force the score and run an immediate re-evaluation tick."""
        live = self._sessions.get(session_id)
        if live is None:
            logger.debug("registry.unknown_session", session=session_id, signal="score")
            return None
        async with live.lock:
            if not live.engine.set_score(value):
                return None
            logger.info("registry.score_overridden", session=session_id, score=value)
            return await self._tick_locked(session_id, live)

    # Named host signals

    async def set_therapy_active(self, session_id: str, active: bool) -> bool:
        return await self.set_mode(session_id, Mode.THERAPY_LOCKED, active)

    async def set_reader_mode_active(self, session_id: str, active: bool) -> bool:
        return await self.set_mode(session_id, Mode.READER_LOCKED, active)

    async def therapy_completed(self, session_id: str) -> bool:
        return await self.complete(session_id, Mode.THERAPY_LOCKED)

    async def reader_mode_exited(self, session_id: str) -> bool:
        return await self.complete(session_id, Mode.READER_LOCKED)

    # ── Ticking ───────────────────────────────────────────────

    async def tick(self, session_id: str) -> TickOutput | None:
        """Run one evaluation for *session_id* (``None`` if unknown)."""
        live = self._sessions.get(session_id)
        if live is None:
            return None
        async with live.lock:
            return await self._tick_locked(session_id, live)

    async def _tick_locked(self, session_id: str, live: LiveSession) -> TickOutput:
        live.in_flight = True
        try:
            with structlog.contextvars.bound_contextvars(session=session_id):
                features = live.aggregator.peek()
                output = live.engine.advance(features, self._clock())
                for event in output.events:
                    await self._publisher.publish(event)
                live.aggregator.consume()
        finally:
            live.in_flight = False

        live.ticks += 1
        self._stats["ticks"] += 1
        self._persist(session_id, live)
        return output

    async def _run_timer(self, session_id: str, live: LiveSession) -> None:
        """Fixed-rate loop; cancelled by :meth:`end_session`."""
        loop = asyncio.get_running_loop()
        interval = self._config.tick_interval_ms / 1000
        next_at = loop.time() + interval
        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            next_at += interval
            if next_at < loop.time():
                next_at = loop.time() + interval

            if live.in_flight:
                self._stats["skipped_ticks"] += 1
                logger.debug("registry.tick_skipped", session=session_id)
                continue
            try:
                async with live.lock:
                    await self._tick_locked(session_id, live)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._stats["tick_errors"] += 1
                logger.exception("registry.tick_error", session=session_id)

    # ── Internals ─────────────────────────────────────────────

    def _resolve_category(
        self,
        session_id: str,
        category: ContextCategory | str | None,
        url: str | None,
    ) -> ContextCategory | None:
        if category is not None:
            try:
                return parse_category(category)
            except UnknownCategoryError as exc:
                logger.warning("registry.rejected_category", session=session_id, category=exc.category)
                return None
        if url is not None:
            return classify_url(url)
        return None

    def _persist(self, session_id: str, live: LiveSession) -> None:
        """Schedule a snapshot write without delaying the caller."""
        if self._snapshot_repo is None:
            return
        if session_id not in self._sessions:
            return
        if live.persist_task is not None and not live.persist_task.done():
            return  # previous write still running; the next tick writes fresher state
        live.persist_task = asyncio.create_task(self._write_snapshot(live.engine.snapshot()))

    async def _write_snapshot(self, snapshot: SessionSnapshot) -> None:
        try:
            await self._snapshot_repo.upsert(snapshot)  # type: ignore[union-attr]
        except Exception as exc:
            logger.warning("registry.snapshot_write_failed", session=snapshot.session_id, error=str(exc))
