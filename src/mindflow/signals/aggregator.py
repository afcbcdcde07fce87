"""Signal aggregation — reduce raw scroll/click events to per-tick rate features.

One :class:`SignalAggregator` lives per session.  It keeps two bounded
sliding windows (scroll displacements and click timestamps) plus two
anxiety counters:

* **direction changes** ("yo-yo" scrolling) — a reversal of scroll
  direction within ``reversal_window_ms`` whose displacement exceeds the
  ``reversal_noise_px`` floor;
* **rage clicks** — a click within ``rage_radius_px`` of the previous one
  and less than ``rage_interval_ms`` after it.

Reading is split in two so that the registry can publish a tick's events
before the counters move on: :meth:`SignalAggregator.peek` reduces the
windows, :meth:`SignalAggregator.consume` applies the post-report decay.
:meth:`SignalAggregator.sample` does both.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass

import structlog

from mindflow.engine.config import EngineConfig
from mindflow.models import FeatureSample, InteractionEvent, InteractionType

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class _ScrollSample:
    time: float
    displacement: float


def _valid_time(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value >= 0


def _valid_coord(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


class SignalAggregator:
    """Per-session reducer of interaction events into :class:`FeatureSample`.

    All methods are O(window) and never raise: malformed samples are
    logged and dropped without touching any state.
    """

    def __init__(self, config: EngineConfig | None = None, *, session_id: str | None = None) -> None:
        self._config = config or EngineConfig()
        self._session_id = session_id

        self._scroll: deque[_ScrollSample] = deque()
        self._clicks: deque[float] = deque()

        self._last_position: float | None = None
        self._last_scroll_time: float | None = None
        self._direction = 0  # 1 down, -1 up, 0 unknown

        self._last_click: tuple[float, float] | None = None
        self._last_click_time: float | None = None

        self.direction_changes = 0
        self.rage_clicks = 0

    # ── Observation ───────────────────────────────────────────

    def on_scroll(self, position: float, time: float) -> bool:
        """Record a scroll position at *time* (epoch ms). Return ``False`` if rejected."""
        if not (_valid_coord(position) and _valid_time(time)):
            self._reject("scroll", position=position, time=time)
            return False

        cfg = self._config
        displacement = 0.0
        if self._last_position is not None:
            displacement = abs(position - self._last_position)
            if displacement > cfg.reversal_noise_px:
                direction = 1 if position > self._last_position else -1
                if (
                    self._direction != 0
                    and direction != self._direction
                    and self._last_scroll_time is not None
                    and time - self._last_scroll_time < cfg.reversal_window_ms
                ):
                    self.direction_changes += 1
                self._direction = direction

        self._last_position = position
        self._last_scroll_time = time
        self._scroll.append(_ScrollSample(time=time, displacement=displacement))

        cutoff = time - cfg.scroll_window_ms
        while self._scroll and self._scroll[0].time <= cutoff:
            self._scroll.popleft()
        return True

    def on_click(self, x: float, y: float, time: float) -> bool:
        """Record a click at viewport coordinates *x*, *y*. Return ``False`` if rejected."""
        if not (_valid_coord(x) and _valid_coord(y) and _valid_time(time)):
            self._reject("click", x=x, y=y, time=time)
            return False

        cfg = self._config
        if self._last_click is not None and self._last_click_time is not None:
            distance = math.hypot(x - self._last_click[0], y - self._last_click[1])
            if distance < cfg.rage_radius_px and time - self._last_click_time < cfg.rage_interval_ms:
                self.rage_clicks += 1

        self._last_click = (x, y)
        self._last_click_time = time
        self._clicks.append(time)

        cutoff = time - cfg.click_window_ms
        while self._clicks and self._clicks[0] <= cutoff:
            self._clicks.popleft()
        return True

    def observe(self, event: InteractionEvent) -> bool:
        """Dispatch a validated :class:`InteractionEvent` to the matching handler."""
        if event.type is InteractionType.SCROLL:
            return self.on_scroll(event.position, event.timestamp)  # type: ignore[arg-type]
        return self.on_click(event.x, event.y, event.timestamp)  # type: ignore[arg-type]

    # ── Reduction ─────────────────────────────────────────────

    def peek(self) -> FeatureSample:
        """Reduce the current windows without consuming them."""
        cfg = self._config
        distance = sum(s.displacement for s in self._scroll)
        return FeatureSample(
            scroll_speed=distance / (cfg.scroll_window_ms / 1000),
            click_frequency=len(self._clicks) / (cfg.click_window_ms / 1000),
            direction_changes=self.direction_changes,
            rage_clicks=self.rage_clicks,
        )

    def consume(self) -> None:
        """Apply the post-report policy: drop consumed samples and decay counters.

        Direction changes only decrement by ``direction_decay`` so a burst of
        yo-yo scrolling is remembered for a few ticks; rage clicks are
        instantaneous and reset fully.
        """
        self._scroll.clear()
        self._clicks.clear()
        self.direction_changes = max(0, self.direction_changes - self._config.direction_decay)
        self.rage_clicks = 0

    def sample(self) -> FeatureSample:
        """Return the current features and consume them."""
        features = self.peek()
        self.consume()
        return features

    @property
    def pending(self) -> int:
        """Number of buffered scroll + click samples."""
        return len(self._scroll) + len(self._clicks)

    # ── Internals ─────────────────────────────────────────────

    def _reject(self, kind: str, **values: float) -> None:
        logger.warning(
            "aggregator.rejected_sample",
            session=self._session_id,
            kind=kind,
            **{k: repr(v) for k, v in values.items()},
        )
