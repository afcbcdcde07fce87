"""Score engine — per-session stress estimator and intervention state machine.

Each call to :meth:`ScoreEngine.advance` is one tick:

1. **Mode resolution** (strict priority, early return for locked modes)
   a. *Therapy-locked*: recovery-only accelerated decay, level pinned to 3.
   b. *Reader-locked*: score pulled toward the reader band, level ≥ 2.
   c. *Standard*: continue.
2. **Entropy** of the tick's features (classifier only).
3. **Activity branch**: disordered activity → weighted increments;
   orderly activity → recovery (gentler inside the flow band).
4. **Idle branch**: grace → hold; deep reading on passive pages → small
   rebate; otherwise natural decay proportional to the score.
5. **Level-1 floor lock**: a session at level 1 lands on the floor instead
   of falling through it.
6. **Clamp** to ``[min_score, max_score]``.
7. **Level** from the hysteresis table (standard mode only).
8. **Events**: one :class:`LevelChanged` per level change, otherwise at most
   one :class:`Suggestion` until the score drops below level 2.

The engine is synchronous and side-effect free apart from its own state;
events are returned to the caller for publishing.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import structlog

from mindflow.engine.config import EngineConfig
from mindflow.engine.entropy import EntropyReading, compute_entropy, saturation
from mindflow.engine.levels import LevelPolicy
from mindflow.models import (
    ContextCategory,
    EngineEvent,
    FeatureSample,
    LevelChanged,
    Mode,
    SessionSnapshot,
    Suggestion,
    TickOutput,
)

logger = structlog.get_logger(__name__)


@dataclass
class SessionState:
    """Mutable per-session state owned by a :class:`ScoreEngine`."""

    session_id: str
    category: ContextCategory = ContextCategory.OTHER
    score: float = 0.0
    level: int = 0
    therapy_active: bool = False
    reader_active: bool = False
    last_activity: float = 0.0
    idle: bool = False
    deep_reading: bool = False
    entropy: float = 0.0
    suggestion_shown: bool = False

    @property
    def mode(self) -> Mode:
        if self.therapy_active:
            return Mode.THERAPY_LOCKED
        if self.reader_active:
            return Mode.READER_LOCKED
        return Mode.STANDARD


class ScoreEngine:
    """Time-decayed stress score with mode locks and hysteresis-gated levels.

    Parameters
    ----------
    session_id : str
        Identifier stamped on every emitted event.
    config : EngineConfig | None
        Constant table; defaults to :class:`EngineConfig`.
    category : ContextCategory
        Initial page category.
    now : float
        Creation time in epoch ms; idle time is measured from here until
        the first activity.
    """

    def __init__(
        self,
        session_id: str,
        config: EngineConfig | None = None,
        *,
        category: ContextCategory = ContextCategory.OTHER,
        now: float = 0.0,
    ) -> None:
        self._config = config or EngineConfig()
        self._policy = LevelPolicy.from_config(self._config)
        self._state = SessionState(
            session_id=session_id,
            category=category,
            score=self._config.min_score,
            last_activity=now,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def policy(self) -> LevelPolicy:
        return self._policy

    # ── Tick ──────────────────────────────────────────────────

    def advance(self, features: FeatureSample, now: float) -> TickOutput:
        """Run one tick on *features* observed up to *now* (epoch ms)."""
        cfg = self._config
        state = self._state
        previous_level = state.level
        signals: tuple[str, ...] = ()

        if self._is_active(features):
            state.last_activity = now

        # locked modes do not measure disorder
        if state.therapy_active:
            state.entropy = 0.0
            delta = self._therapy_delta()
            state.score = cfg.clamp(state.score + delta)
            new_level = 3
        elif state.reader_active:
            state.entropy = 0.0
            delta = self._reader_delta()
            state.score = cfg.clamp(state.score + delta)
            new_level = 3 if state.score > cfg.level_3_threshold else 2
        else:
            reading = compute_entropy(features, cfg)
            state.entropy = reading.value
            signals = reading.signals

            if self._is_active(features):
                state.idle = False
                state.deep_reading = False
                if reading.value > cfg.disorder_threshold:
                    delta = self._disorder_increment(features, reading)
                else:
                    delta = self._orderly_recovery()
            else:
                delta = self._idle_delta(now)

            delta = self._apply_floor_lock(delta, previous_level)
            state.score = cfg.clamp(state.score + delta)
            new_level = self._policy.derive(state.score, previous_level)

        events = self._emit(previous_level, new_level, now)

        return TickOutput(
            delta=delta,
            entropy=state.entropy,
            new_level=new_level,
            mode_locked=state.mode is not Mode.STANDARD,
            signals=signals,
            events=tuple(events),
        )

    # ── External mutations ────────────────────────────────────

    def set_mode(self, mode: Mode, active: bool) -> None:
        """Raise or clear a mode lock.  ``STANDARD`` clears both locks."""
        state = self._state
        if mode is Mode.THERAPY_LOCKED:
            state.therapy_active = active
        elif mode is Mode.READER_LOCKED:
            state.reader_active = active
        else:
            state.therapy_active = False
            state.reader_active = False
        logger.info("engine.mode_set", session=state.session_id, mode=mode.value, active=active)

    def complete(self, mode: Mode, now: float) -> LevelChanged | None:
        """Handle a completion signal for *mode*.

        Finishing therapy clears the therapy lock and applies a one-time
        rebate: the score snaps to the flow-band midpoint and the level is
        forced back to 0 or 1.  Leaving reader mode only clears its lock.
        Returns the resulting :class:`LevelChanged`, if the level moved.
        """
        state = self._state
        if mode is Mode.READER_LOCKED:
            state.reader_active = False
            logger.info("engine.reader_exited", session=state.session_id)
            return None
        if mode is not Mode.THERAPY_LOCKED:
            return None

        previous_level = state.level
        state.therapy_active = False
        state.score = self._config.clamp(self._config.flow_band_midpoint)
        state.suggestion_shown = False
        state.level = min(1, self._policy.derive(state.score, 0))
        logger.info(
            "engine.therapy_completed",
            session=state.session_id,
            score=round(state.score, 2),
            level=state.level,
        )
        if state.level == previous_level:
            return None
        return self._level_event(previous_level, now)

    def set_score(self, value: float) -> bool:
        """Force the score (clamped).  Non-finite values are rejected."""
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            logger.warning("engine.rejected_score", session=self._state.session_id, value=repr(value))
            return False
        self._state.score = self._config.clamp(float(value))
        return True

    def set_category(self, category: ContextCategory) -> None:
        self._state.category = category

    def snapshot(self) -> SessionSnapshot:
        state = self._state
        return SessionSnapshot(
            session_id=state.session_id,
            score=state.score,
            level=state.level,
            mode=state.mode,
            idle=state.idle,
            deep_reading=state.deep_reading,
            entropy=state.entropy,
            in_flow_band=self._config.in_flow_band(state.score),
            category=state.category,
            suggestion_pending=state.suggestion_shown,
            last_activity=state.last_activity,
        )

    # ── Deltas ────────────────────────────────────────────────

    def _is_active(self, features: FeatureSample) -> bool:
        return (
            features.scroll_speed > self._config.activity_scroll_floor
            or features.click_frequency > 0
        )

    def _therapy_delta(self) -> float:
        cfg = self._config
        decay = (cfg.base_recovery_rate + self._state.score * cfg.decay_factor) * cfg.therapy_bonus
        return -decay

    def _reader_delta(self) -> float:
        cfg = self._config
        score = self._state.score
        if cfg.reader_band_low <= score <= cfg.reader_band_high:
            return 0.0
        if score > cfg.reader_band_high:
            decay = cfg.reader_decay * cfg.profile(self._state.category).decay_multiplier
            return -min(decay, score - cfg.reader_band_high)
        return min(cfg.reader_nudge, cfg.reader_band_low - score)

    def _disorder_increment(self, features: FeatureSample, reading: EntropyReading) -> float:
        cfg = self._config
        components = reading.components
        increment = 0.0

        if "scroll_chaotic" in components:
            increment += cfg.scroll_chaotic_increment
        elif "scroll_elevated" in components:
            increment += cfg.scroll_increment

        if "click_chaotic" in components:
            increment += cfg.click_chaotic_increment
        elif "click_elevated" in components:
            increment += cfg.click_increment

        increment += cfg.direction_increment * saturation(
            features.direction_changes, cfg.direction_changes_chaotic
        )
        increment += cfg.rage_increment * saturation(features.rage_clicks, cfg.rage_clicks_chaotic)

        return increment * cfg.profile(self._state.category).weight

    def _orderly_recovery(self) -> float:
        cfg = self._config
        score = self._state.score
        if cfg.in_flow_band(score):
            return -cfg.flow_recovery
        recovery = cfg.base_recovery_rate
        if score > cfg.high_score_threshold:
            recovery *= cfg.high_score_recovery_multiplier
        return -recovery

    def _idle_delta(self, now: float) -> float:
        cfg = self._config
        state = self._state
        elapsed = now - state.last_activity

        if elapsed <= cfg.idle_grace_ms:
            state.idle = False
            state.deep_reading = False
            return 0.0

        state.idle = True
        if elapsed > cfg.deep_reading_ms and state.category in cfg.passive_categories:
            if not state.deep_reading:
                logger.info("engine.deep_reading", session=state.session_id)
            state.deep_reading = True
            return -cfg.deep_reading_rebate

        state.deep_reading = False
        decay = (cfg.base_decay_rate + state.score * cfg.decay_factor)
        decay *= cfg.profile(state.category).decay_multiplier
        if cfg.in_flow_band(state.score):
            decay *= cfg.flow_decay_scale
        if state.score > cfg.min_score:
            decay = max(decay, cfg.min_decay)
        return -decay

    def _apply_floor_lock(self, delta: float, previous_level: int) -> float:
        floor = self._config.level_1_floor
        score = self._state.score
        if previous_level == 1 and floor is not None and score >= floor and score + delta < floor:
            return floor - score
        return delta

    # ── Events ────────────────────────────────────────────────

    def _emit(self, previous_level: int, new_level: int, now: float) -> list[EngineEvent]:
        cfg = self._config
        state = self._state
        events: list[EngineEvent] = []

        if new_level != previous_level:
            state.level = new_level
            events.append(self._level_event(previous_level, now))
            logger.info(
                "engine.level_changed",
                session=state.session_id,
                previous=previous_level,
                level=new_level,
                score=round(state.score, 2),
                mode=state.mode.value,
            )
        elif state.mode is Mode.STANDARD and new_level == 2 and not state.suggestion_shown:
            kind = self._policy.suggestion_for(state.score)
            if kind is not None:
                state.suggestion_shown = True
                events.append(
                    Suggestion(
                        session_id=state.session_id,
                        score=state.score,
                        kind=kind,
                        timestamp=now,
                    )
                )
                logger.info("engine.suggestion", session=state.session_id, kind=kind.value)

        if state.score < cfg.level_2_threshold:
            state.suggestion_shown = False
        return events

    def _level_event(self, previous_level: int, now: float) -> LevelChanged:
        state = self._state
        return LevelChanged(
            session_id=state.session_id,
            mode=state.mode,
            level=state.level,
            previous_level=previous_level,
            score=state.score,
            entropy=state.entropy,
            in_flow_band=self._config.in_flow_band(state.score),
            category=state.category,
            timestamp=now,
        )
