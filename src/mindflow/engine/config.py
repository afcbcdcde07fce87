"""Engine configuration table — every numeric constant of the scoring model.

All thresholds, increments, decay rates, windows and bands live in a single
:class:`EngineConfig`.  The defaults below are one consistent revision; a
deployment can supply its own table as JSON via ``ENGINE_CONFIG_FILE``.
Times are milliseconds, speeds px/s, frequencies clicks/s, scores are on
the ``[min_score, max_score]`` scale.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator

from mindflow.errors import EngineConfigError
from mindflow.models import ContextCategory

if TYPE_CHECKING:
    from mindflow.config import Settings

logger = structlog.get_logger(__name__)


class CategoryProfile(BaseModel):
    """Context coefficient pair for one page category."""

    weight: float = Field(1.0, gt=0)
    decay_multiplier: float = Field(1.0, gt=0)


def _default_profiles() -> dict[ContextCategory, CategoryProfile]:
    return {
        ContextCategory.SOCIAL: CategoryProfile(weight=1.3, decay_multiplier=0.8),
        ContextCategory.NEWS: CategoryProfile(weight=1.2, decay_multiplier=0.9),
        ContextCategory.VIDEO: CategoryProfile(weight=0.6, decay_multiplier=1.1),
        ContextCategory.DOCUMENT: CategoryProfile(weight=0.5, decay_multiplier=1.2),
        ContextCategory.SHOPPING: CategoryProfile(weight=1.1, decay_multiplier=0.9),
        ContextCategory.OTHER: CategoryProfile(weight=1.0, decay_multiplier=1.0),
    }


class EngineConfig(BaseModel):
    """Tunable constants for the aggregator, score engine and scheduler."""

    # ── Score range ───────────────────────────────────────────
    min_score: float = 0.0
    max_score: float = 100.0

    # ── Scheduling ────────────────────────────────────────────
    tick_interval_ms: float = Field(1000.0, gt=0)

    # ── Aggregation windows ───────────────────────────────────
    scroll_window_ms: float = Field(500.0, gt=0)
    click_window_ms: float = Field(1000.0, gt=0)
    reversal_window_ms: float = Field(1000.0, gt=0)
    reversal_noise_px: float = Field(10.0, ge=0)
    rage_radius_px: float = Field(20.0, ge=0)
    rage_interval_ms: float = Field(500.0, gt=0)
    direction_decay: int = Field(1, ge=0)  # subtracted after each report

    # ── Activity detection ────────────────────────────────────
    activity_scroll_floor: float = Field(10.0, ge=0)  # px/s

    # ── Entropy thresholds ────────────────────────────────────
    scroll_speed_threshold: float = 1500.0
    scroll_speed_chaotic: float = 3000.0
    click_frequency_threshold: float = 3.0
    click_frequency_chaotic: float = 5.0
    direction_changes_chaotic: int = Field(3, ge=1)
    rage_clicks_chaotic: int = Field(2, ge=1)
    disorder_threshold: float = Field(0.3, ge=0, le=1)

    # ── Entropy component weights ─────────────────────────────
    entropy_scroll_elevated: float = 0.2
    entropy_scroll_chaotic: float = 0.4
    entropy_click_elevated: float = 0.2
    entropy_click_chaotic: float = 0.4
    entropy_direction: float = 0.4
    entropy_rage: float = 0.4

    # ── Increments (scaled by category weight) ────────────────
    scroll_increment: float = 4.0
    scroll_chaotic_increment: float = 10.0
    click_increment: float = 5.0
    click_chaotic_increment: float = 10.0
    direction_increment: float = 12.0
    rage_increment: float = 15.0

    # ── Recovery during orderly activity ──────────────────────
    flow_recovery: float = 0.2
    base_recovery_rate: float = 0.6
    high_score_threshold: float = 70.0
    high_score_recovery_multiplier: float = 2.0

    # ── Idle handling ─────────────────────────────────────────
    idle_grace_ms: float = Field(3000.0, ge=0)
    deep_reading_ms: float = Field(15000.0, ge=0)
    deep_reading_rebate: float = 0.5
    passive_categories: list[ContextCategory] = Field(
        default_factory=lambda: [
            ContextCategory.DOCUMENT,
            ContextCategory.NEWS,
            ContextCategory.VIDEO,
        ],
    )
    base_decay_rate: float = 0.5
    decay_factor: float = 0.02
    min_decay: float = 0.1
    flow_decay_scale: float = 0.5

    # ── Locked modes ──────────────────────────────────────────
    therapy_bonus: float = 2.0
    reader_band_low: float = 45.0
    reader_band_high: float = 55.0
    reader_decay: float = 0.5
    reader_nudge: float = 0.3

    # ── Flow band ─────────────────────────────────────────────
    flow_band_low: float = 35.0
    flow_band_high: float = 55.0

    # ── Levels ────────────────────────────────────────────────
    level_1_enter: float = 50.0
    level_1_exit: float = 40.0
    level_1_floor: float | None = 45.0  # None disables the floor lock
    level_2_threshold: float = 65.0
    level_3_threshold: float = 85.0
    suggest_gentle: float = 68.0
    suggest_strong: float = 75.0

    # ── Context ───────────────────────────────────────────────
    categories: dict[ContextCategory, CategoryProfile] = Field(
        default_factory=_default_profiles,
    )

    @model_validator(mode="after")
    def _check_consistency(self) -> EngineConfig:
        if self.min_score >= self.max_score:
            raise ValueError("min_score must be below max_score")
        if not self.level_1_exit < self.level_1_enter:
            raise ValueError("level_1_exit must be strictly below level_1_enter")
        if not self.level_1_enter < self.level_2_threshold < self.level_3_threshold:
            raise ValueError("level thresholds must be strictly ascending")
        if self.level_1_floor is not None and not (
            self.level_1_exit < self.level_1_floor < self.level_1_enter
        ):
            raise ValueError("level_1_floor must lie strictly between exit and enter")
        if not (
            self.level_2_threshold <= self.suggest_gentle
            < self.suggest_strong <= self.level_3_threshold
        ):
            raise ValueError("suggestion sub-thresholds must lie inside level 2")
        if self.flow_band_low >= self.flow_band_high:
            raise ValueError("flow band is empty")
        if self.reader_band_low > self.reader_band_high:
            raise ValueError("reader band is empty")
        if self.scroll_speed_threshold > self.scroll_speed_chaotic:
            raise ValueError("scroll_speed_threshold exceeds scroll_speed_chaotic")
        if self.click_frequency_threshold > self.click_frequency_chaotic:
            raise ValueError("click_frequency_threshold exceeds click_frequency_chaotic")
        for name in (
            "entropy_scroll_chaotic",
            "entropy_click_chaotic",
            "entropy_direction",
            "entropy_rage",
        ):
            # a saturated chaotic signal must count as disorder on its own
            if getattr(self, name) <= self.disorder_threshold:
                raise ValueError(f"{name} must exceed disorder_threshold")
        missing = set(ContextCategory) - set(self.categories)
        if missing:
            raise ValueError(f"missing category profiles: {sorted(c.value for c in missing)}")
        return self

    # ── Derived helpers ───────────────────────────────────────

    @property
    def flow_band_midpoint(self) -> float:
        return (self.flow_band_low + self.flow_band_high) / 2

    def in_flow_band(self, score: float) -> bool:
        return self.flow_band_low <= score <= self.flow_band_high

    def profile(self, category: ContextCategory) -> CategoryProfile:
        return self.categories[category]

    def clamp(self, score: float) -> float:
        return max(self.min_score, min(self.max_score, score))


def load_engine_config(settings: Settings | None = None) -> EngineConfig:
    """Return the engine table from ``settings.engine_config_file`` or defaults.

    Raises :class:`EngineConfigError` when the file is missing or invalid.
    """
    path_value = settings.engine_config_file if settings is not None else ""
    if not path_value:
        config = EngineConfig()
    else:
        path = Path(path_value)
        try:
            config = EngineConfig.model_validate_json(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise EngineConfigError(f"Cannot read engine config {path}: {exc}") from exc
        except ValidationError as exc:
            raise EngineConfigError(f"Invalid engine config {path}: {exc}") from exc
        logger.info("engine_config.loaded", path=str(path))

    if settings is not None and settings.tick_interval_ms is not None:
        config = config.model_copy(update={"tick_interval_ms": settings.tick_interval_ms})
    return config
