"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from mindflow.engine.config import EngineConfig
from mindflow.engine.score import ScoreEngine
from mindflow.models import ContextCategory, EngineEvent
from mindflow.notifications.handlers import CallbackHandler, EventPublisher, LogHandler
from mindflow.registry.service import SessionRegistry
from mindflow.signals.aggregator import SignalAggregator


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(deep_reading_ms=10_000)


@pytest.fixture
def aggregator(config: EngineConfig) -> SignalAggregator:
    return SignalAggregator(config, session_id="S001")


@pytest.fixture
def engine(config: EngineConfig) -> ScoreEngine:
    return ScoreEngine("S001", config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def received() -> list[EngineEvent]:
    """Events captured by the registry fixture's callback handler."""
    return []


@pytest.fixture
def publisher(received: list[EngineEvent]) -> EventPublisher:
    return EventPublisher(handlers=[LogHandler(), CallbackHandler(received.append, name="capture")])


@pytest.fixture
async def registry(config: EngineConfig, publisher: EventPublisher, clock: FakeClock):
    """Registry without timers: tests step ticks by hand with the fake clock."""
    reg = SessionRegistry(config, publisher, clock=clock, start_timers=False)
    yield reg
    await reg.shutdown()


def _scroll_burst(
    aggregator: SignalAggregator,
    *,
    start: float,
    start_position: float = 0.0,
    step_px: float = 200.0,
    interval_ms: float = 50.0,
    count: int = 20,
) -> float:
    """Feed a steady downward scroll; return the last position."""
    position = start_position
    for i in range(1, count + 1):
        position = start_position + i * step_px
        aggregator.on_scroll(position, start + i * interval_ms)
    return position


@pytest.fixture
def scroll_burst():
    return _scroll_burst
