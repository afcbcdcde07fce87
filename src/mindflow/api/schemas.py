"""Request / response models shared across API route modules."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from mindflow.models import ContextCategory, Mode


class StartSessionRequest(BaseModel):
    category: ContextCategory | None = None
    url: str | None = None


class EventBatch(BaseModel):
    """One or more raw interactions for a session, in arrival order.

    Samples stay as raw objects here and are validated one by one at ingestion,
    so a single malformed sample does not reject the rest of the batch.
    """
    events: list[dict[str, Any]] = Field(min_length=1)


class ModeRequest(BaseModel):
    mode: Mode
    active: bool


class CompleteRequest(BaseModel):
    mode: Mode


class ScoreRequest(BaseModel):
    score: float = Field(allow_inf_nan=False)


class SignalResponse(BaseModel):
    session_id: str
    applied: bool
