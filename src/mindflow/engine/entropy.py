"""Behavioural entropy — a [0, 1] disorder score over one tick's features.

Entropy is a classifier, not a score input: the engine uses it to decide
whether activity is *disordered* (penalised) or *purposeful* (recovered).
Components are additive and independent; the sum is capped at 1.

=====================  =============================================
Component              Contribution
=====================  =============================================
scroll_chaotic         ``entropy_scroll_chaotic`` above chaotic speed
scroll_elevated        ``entropy_scroll_elevated`` above threshold
click_chaotic          ``entropy_click_chaotic`` above chaotic rate
click_elevated         ``entropy_click_elevated`` above threshold
direction_reversals    ``entropy_direction`` × saturation ratio
rage_clicks            ``entropy_rage`` × saturation ratio
=====================  =============================================
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mindflow.engine.config import EngineConfig
from mindflow.models import FeatureSample


@dataclass(frozen=True, slots=True)
class EntropyReading:
    """Entropy value plus the components that produced it."""

    value: float
    components: dict[str, float] = field(default_factory=dict)

    @property
    def signals(self) -> tuple[str, ...]:
        return tuple(self.components)


def saturation(count: float, limit: float) -> float:
    """Return ``count / limit`` clipped to [0, 1]."""
    if count <= 0:
        return 0.0
    return min(1.0, count / limit)


def compute_entropy(features: FeatureSample, config: EngineConfig) -> EntropyReading:
    """Score the disorder of *features* under *config*."""
    components: dict[str, float] = {}

    if features.scroll_speed > config.scroll_speed_chaotic:
        components["scroll_chaotic"] = config.entropy_scroll_chaotic
    elif features.scroll_speed > config.scroll_speed_threshold:
        components["scroll_elevated"] = config.entropy_scroll_elevated

    if features.click_frequency > config.click_frequency_chaotic:
        components["click_chaotic"] = config.entropy_click_chaotic
    elif features.click_frequency > config.click_frequency_threshold:
        components["click_elevated"] = config.entropy_click_elevated

    if features.direction_changes > 0:
        components["direction_reversals"] = config.entropy_direction * saturation(
            features.direction_changes, config.direction_changes_chaotic
        )

    if features.rage_clicks > 0:
        components["rage_clicks"] = config.entropy_rage * saturation(
            features.rage_clicks, config.rage_clicks_chaotic
        )

    value = min(1.0, max(0.0, sum(components.values())))
    return EntropyReading(value=value, components=components)
