"""Tests for the session registry: lifecycle, ticking, signals and persistence."""

from __future__ import annotations

import asyncio

import pytest

from mindflow.engine.config import EngineConfig
from mindflow.models import (
    ContextCategory,
    EngineEvent,
    InteractionEvent,
    LevelChanged,
    Mode,
    SessionSnapshot,
)
from mindflow.notifications.handlers import CallbackHandler, EventPublisher
from mindflow.registry.service import SessionRegistry


def _scroll(position: float, timestamp: float) -> InteractionEvent:
    return InteractionEvent(type="scroll", position=position, timestamp=timestamp)


class _MemorySnapshots:
    """Stand-in for SnapshotRepository recording calls."""

    def __init__(self, *, fail: bool = False) -> None:
        self.rows: dict[str, SessionSnapshot] = {}
        self.fail = fail

    async def upsert(self, snapshot: SessionSnapshot) -> None:
        if self.fail:
            raise RuntimeError("disk full")
        self.rows[snapshot.session_id] = snapshot

    async def delete(self, session_id: str) -> bool:
        if self.fail:
            raise RuntimeError("disk full")
        return self.rows.pop(session_id, None) is not None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, registry: SessionRegistry):
        assert registry.start_session("tab-1") is True
        assert registry.start_session("tab-1") is False
        assert registry.session_ids() == ["tab-1"]
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_end_evicts_everything(self, registry: SessionRegistry):
        registry.start_session("tab-1")
        assert await registry.end_session("tab-1") is True
        assert "tab-1" not in registry
        assert registry.snapshot("tab-1") is None
        assert await registry.end_session("tab-1") is False

    @pytest.mark.asyncio
    async def test_start_with_url_classifies(self, registry: SessionRegistry):
        registry.start_session("tab-1", url="https://www.youtube.com/watch?v=1")
        assert registry.snapshot("tab-1").category is ContextCategory.VIDEO

    @pytest.mark.asyncio
    async def test_start_with_unknown_category_falls_back(self, registry: SessionRegistry):
        registry.start_session("tab-1", category="gaming")
        assert registry.snapshot("tab-1").category is ContextCategory.OTHER

    @pytest.mark.asyncio
    async def test_shutdown_ends_all(self, registry: SessionRegistry):
        registry.start_session("a")
        registry.start_session("b")
        await registry.shutdown()
        assert len(registry) == 0


class TestUnknownSession:
    @pytest.mark.asyncio
    async def test_signals_are_noops(self, registry: SessionRegistry, received: list[EngineEvent]):
        assert await registry.tick("ghost") is None
        assert await registry.record_interaction("ghost", _scroll(10, 0)) is False
        assert await registry.set_context("ghost", category="news") is False
        assert await registry.set_mode("ghost", Mode.THERAPY_LOCKED, True) is False
        assert await registry.complete("ghost", Mode.THERAPY_LOCKED) is False
        assert await registry.set_score("ghost", 80.0) is None
        assert registry.snapshot("ghost") is None
        assert received == []
        assert len(registry) == 0


class TestTicking:
    @pytest.mark.asyncio
    async def test_chaotic_scroll_raises_level(
        self, registry: SessionRegistry, clock, received: list[EngineEvent]
    ):
        registry.start_session("tab-1", category="social")
        position = 0.0
        for tick in range(1, 5):
            for i in range(1, 21):
                position += 200
                await registry.record_interaction(
                    "tab-1", _scroll(position, (tick - 1) * 1000 + i * 50)
                )
            clock.now = tick * 1000
            await registry.tick("tab-1")

        snap = registry.snapshot("tab-1")
        assert snap.score == pytest.approx(52.0)
        assert snap.level == 1
        changes = [e for e in received if isinstance(e, LevelChanged)]
        assert [(e.previous_level, e.level) for e in changes] == [(0, 1)]
        assert changes[0].session_id == "tab-1"
        assert changes[0].category is ContextCategory.SOCIAL

    @pytest.mark.asyncio
    async def test_features_consumed_after_tick(self, registry: SessionRegistry, clock):
        registry.start_session("tab-1")
        await registry.record_interaction("tab-1", _scroll(0, 0))
        await registry.record_interaction("tab-1", _scroll(1000, 100))
        clock.now = 1000
        first = await registry.tick("tab-1")
        clock.now = 2000
        second = await registry.tick("tab-1")
        assert first.signals == ("scroll_elevated",)
        assert second.signals == ()

    @pytest.mark.asyncio
    async def test_set_score_runs_immediate_tick(
        self, registry: SessionRegistry, received: list[EngineEvent]
    ):
        registry.start_session("tab-1")
        output = await registry.set_score("tab-1", 90.0)
        assert output is not None
        assert output.new_level == 3
        assert registry.snapshot("tab-1").level == 3
        assert [e.level for e in received if isinstance(e, LevelChanged)] == [3]

    @pytest.mark.asyncio
    async def test_set_score_rejects_nan(self, registry: SessionRegistry):
        registry.start_session("tab-1")
        assert await registry.set_score("tab-1", float("nan")) is None
        assert registry.snapshot("tab-1").score == 0.0

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_break_tick(self, config: EngineConfig, clock):
        def _explode(event: EngineEvent) -> None:
            raise RuntimeError("display closed")

        publisher = EventPublisher(handlers=[CallbackHandler(_explode)])
        registry = SessionRegistry(config, publisher, clock=clock, start_timers=False)
        registry.start_session("tab-1")
        output = await registry.set_score("tab-1", 60.0)
        assert output.new_level == 1
        assert registry.snapshot("tab-1").level == 1
        await registry.shutdown()


class TestModes:
    @pytest.mark.asyncio
    async def test_therapy_lifecycle(
        self, registry: SessionRegistry, clock, received: list[EngineEvent]
    ):
        registry.start_session("tab-1")
        await registry.set_score("tab-1", 90.0)
        await registry.set_therapy_active("tab-1", True)
        clock.now = 1000
        output = await registry.tick("tab-1")
        assert output.new_level == 3
        assert output.mode_locked is True

        received.clear()
        assert await registry.therapy_completed("tab-1") is True
        snap = registry.snapshot("tab-1")
        assert snap.score == pytest.approx(45.0)
        assert snap.level == 0
        assert snap.mode is Mode.STANDARD
        assert len(received) == 1
        assert isinstance(received[0], LevelChanged)
        assert (received[0].previous_level, received[0].level) == (3, 0)

        clock.now = 2000
        assert (await registry.tick("tab-1")).new_level == 0

    @pytest.mark.asyncio
    async def test_reader_mode_holds_level_two(self, registry: SessionRegistry, clock):
        registry.start_session("tab-1")
        await registry.set_reader_mode_active("tab-1", True)
        for t in range(1, 4):
            clock.now = t * 1000
            assert (await registry.tick("tab-1")).new_level >= 2
        await registry.reader_mode_exited("tab-1")
        assert registry.snapshot("tab-1").mode is Mode.STANDARD

    @pytest.mark.asyncio
    async def test_context_update(self, registry: SessionRegistry):
        registry.start_session("tab-1")
        assert await registry.set_context("tab-1", url="https://news.ycombinator.com") is True
        assert registry.snapshot("tab-1").category is ContextCategory.NEWS
        assert await registry.set_context("tab-1", category="gaming") is False
        assert registry.snapshot("tab-1").category is ContextCategory.NEWS


class TestTimers:
    @pytest.mark.asyncio
    async def test_timer_ticks_until_session_ends(self, publisher: EventPublisher):
        config = EngineConfig(tick_interval_ms=20)
        registry = SessionRegistry(config, publisher)
        registry.start_session("tab-1")
        assert registry.has_timer("tab-1")

        await asyncio.sleep(0.15)
        ticks = registry.stats["ticks"]
        assert ticks >= 2

        await registry.end_session("tab-1")
        assert not registry.has_timer("tab-1")
        await asyncio.sleep(0.1)
        assert registry.stats["ticks"] == ticks
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_one_timer_per_session(self, publisher: EventPublisher):
        registry = SessionRegistry(EngineConfig(tick_interval_ms=50), publisher)
        registry.start_session("tab-1")
        registry.start_session("tab-1")
        tasks = [t for t in asyncio.all_tasks() if t.get_name() == "mindflow-tick-tab-1"]
        assert len(tasks) == 1
        await registry.shutdown()

    def test_start_without_loop_leaves_no_session(self):
        registry = SessionRegistry(EngineConfig())
        with pytest.raises(RuntimeError):
            registry.start_session("tab-1")
        assert "tab-1" not in registry
        assert registry.stats["sessions_started"] == 0


class TestPersistence:
    @pytest.mark.asyncio
    async def test_snapshot_written_and_deleted(self, config: EngineConfig, clock, publisher):
        repo = _MemorySnapshots()
        registry = SessionRegistry(config, publisher, snapshot_repo=repo, clock=clock, start_timers=False)
        registry.start_session("tab-1")
        await registry.set_score("tab-1", 30.0)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert repo.rows["tab-1"].score == pytest.approx(30.0)

        await registry.end_session("tab-1")
        assert "tab-1" not in repo.rows

    @pytest.mark.asyncio
    async def test_persistence_failures_are_swallowed(self, config: EngineConfig, clock, publisher):
        registry = SessionRegistry(
            config, publisher, snapshot_repo=_MemorySnapshots(fail=True), clock=clock, start_timers=False
        )
        registry.start_session("tab-1")
        assert (await registry.set_score("tab-1", 30.0)) is not None
        await asyncio.sleep(0)
        assert await registry.end_session("tab-1") is True
