"""Level policy — hysteresis table mapping a score to an intervention level.

Each band carries an ``(enter, exit)`` pair.  A session not yet at a band's
level must *exceed* ``enter`` to reach it; a session already at or above
that level keeps it while the score stays at or above ``exit``.  With
``exit < enter`` this is a Schmitt trigger: a score oscillating between the
two thresholds never changes level.
"""

from __future__ import annotations

from dataclasses import dataclass

from mindflow.engine.config import EngineConfig
from mindflow.models import SuggestionKind


@dataclass(frozen=True, slots=True)
class LevelBand:
    level: int
    enter: float
    exit: float


class LevelPolicy:
    """Evaluate the level table and the level-2 suggestion sub-thresholds."""

    def __init__(
        self,
        bands: list[LevelBand],
        *,
        suggest_gentle: float | None = None,
        suggest_strong: float | None = None,
    ) -> None:
        self._bands = sorted(bands, key=lambda b: b.level)
        for band in self._bands:
            if band.exit > band.enter:
                raise ValueError(f"level {band.level}: exit {band.exit} above enter {band.enter}")
        self._suggest_gentle = suggest_gentle
        self._suggest_strong = suggest_strong

    @classmethod
    def from_config(cls, config: EngineConfig) -> LevelPolicy:
        return cls(
            [
                LevelBand(1, config.level_1_enter, config.level_1_exit),
                LevelBand(2, config.level_2_threshold, config.level_2_threshold),
                LevelBand(3, config.level_3_threshold, config.level_3_threshold),
            ],
            suggest_gentle=config.suggest_gentle,
            suggest_strong=config.suggest_strong,
        )

    @property
    def bands(self) -> list[LevelBand]:
        return list(self._bands)

    def derive(self, score: float, current: int) -> int:
        """Return the level for *score* given the level held at *current*."""
        level = 0
        for band in self._bands:
            if current >= band.level:
                held = score >= band.exit
            else:
                held = score > band.enter
            if not held:
                break
            level = band.level
        return level

    def suggestion_for(self, score: float) -> SuggestionKind | None:
        """Return the suggestion sub-signal warranted by *score*, if any."""
        if self._suggest_strong is not None and score > self._suggest_strong:
            return SuggestionKind.STRONG
        if self._suggest_gentle is not None and score > self._suggest_gentle:
            return SuggestionKind.GENTLE
        return None
