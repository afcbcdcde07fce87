"""Shared models used across the framework.

Wire-facing objects (inbound interaction events, outbound engine events,
snapshots) are Pydantic models.  The per-tick feature and tick records are
small frozen dataclasses: they never leave the process and are created on
every tick.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, Field, model_validator

from mindflow.errors import InvalidSignalError

# ── Enums ─────────────────────────────────────────────────────


class Mode(str, Enum):
    """Exclusive lock state of a session (priority: therapy > reader > standard)."""

    STANDARD = "standard"
    READER_LOCKED = "reader_locked"
    THERAPY_LOCKED = "therapy_locked"


class ContextCategory(str, Enum):
    """Page category used to weight increments and decay."""

    SOCIAL = "social"
    NEWS = "news"
    VIDEO = "video"
    DOCUMENT = "document"
    SHOPPING = "shopping"
    OTHER = "other"


class InteractionType(str, Enum):
    SCROLL = "scroll"
    CLICK = "click"


class SuggestionKind(str, Enum):
    """Strength of a level-2 suggestion sub-signal."""

    GENTLE = "gentle"
    STRONG = "strong"


# ── Inbound ───────────────────────────────────────────────────


class InteractionEvent(BaseModel):
    """A raw scroll or click observation reported by the page.

    Timestamps are epoch milliseconds.  Scroll events carry the vertical
    ``position``; click events carry viewport coordinates ``x`` / ``y``.
    """

    type: InteractionType
    timestamp: float = Field(ge=0, allow_inf_nan=False)
    position: float | None = Field(None, allow_inf_nan=False)
    x: float | None = Field(None, allow_inf_nan=False)
    y: float | None = Field(None, allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_payload(self) -> InteractionEvent:
        if self.type is InteractionType.SCROLL and self.position is None:
            raise InvalidSignalError("scroll events require 'position'")
        if self.type is InteractionType.CLICK and (self.x is None or self.y is None):
            raise InvalidSignalError("click events require 'x' and 'y'")
        return self


class ContextUpdate(BaseModel):
    """Context classification reported by the page/category detector."""

    category: ContextCategory | None = None
    url: str | None = None
    timestamp: float | None = Field(None, ge=0, allow_inf_nan=False)


# ── Per-tick records ──────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FeatureSample:
    """Rate features reduced from one aggregation window."""

    scroll_speed: float = 0.0  # px/s
    click_frequency: float = 0.0  # clicks/s
    direction_changes: int = 0
    rage_clicks: int = 0


@dataclass(frozen=True, slots=True)
class TickOutput:
    """Result of a single :meth:`ScoreEngine.advance` call."""

    delta: float
    entropy: float
    new_level: int
    mode_locked: bool
    signals: tuple[str, ...] = field(default_factory=tuple)
    events: tuple[EngineEvent, ...] = field(default_factory=tuple)


# ── Outbound events ───────────────────────────────────────────


class LevelChanged(BaseModel):
    """Emitted exactly once whenever a session's intervention level changes."""

    type: Literal["level_changed"] = "level_changed"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    mode: Mode
    level: int = Field(ge=0, le=3)
    previous_level: int = Field(ge=0, le=3)
    score: float
    entropy: float = Field(ge=0.0, le=1.0)
    in_flow_band: bool
    category: ContextCategory
    timestamp: float


class Suggestion(BaseModel):
    """Level-2 sub-signal: recommend (gently or strongly) the reader mode."""

    type: Literal["suggestion"] = "suggestion"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    score: float
    kind: SuggestionKind
    timestamp: float


EngineEvent = Union[LevelChanged, Suggestion]


class SessionSnapshot(BaseModel):
    """Pull-based view of a session for display surfaces."""

    session_id: str
    score: float
    level: int
    mode: Mode
    idle: bool
    deep_reading: bool
    entropy: float
    in_flow_band: bool
    category: ContextCategory
    suggestion_pending: bool = False
    last_activity: float | None = None
