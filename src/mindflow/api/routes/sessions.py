"""Session lifecycle, signal and snapshot routes."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from mindflow.api.schemas import (
    CompleteRequest,
    EventBatch,
    ModeRequest,
    ScoreRequest,
    SignalResponse,
    StartSessionRequest,
)
from mindflow.models import ContextUpdate, InteractionEvent
from mindflow.registry.service import SessionRegistry
from mindflow.streaming.pipeline import StreamPipeline

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _registry() -> SessionRegistry:
    from mindflow.api.server import _registry as registry

    if registry is None:
        raise HTTPException(503, "Session registry not ready.")
    return registry


def _pipeline() -> StreamPipeline:
    from mindflow.api.server import _pipeline as pipeline

    if pipeline is None:
        raise HTTPException(503, "Pipeline not ready.")
    return pipeline


# ── Lifecycle ─────────────────────────────────────────────────

@router.get("")
async def list_sessions():
    registry = _registry()
    snapshots = (registry.snapshot(sid) for sid in registry.session_ids())
    return [s.model_dump(mode="json") for s in snapshots if s is not None]


@router.post("/{session_id}", status_code=201)
async def start_session(session_id: str, req: StartSessionRequest | None = None):
    """Start a session (idempotent); ``created`` is false if it was already live."""
    registry = _registry()
    req = req or StartSessionRequest()
    created = registry.start_session(session_id, category=req.category, url=req.url)
    snapshot = registry.snapshot(session_id)
    return {"created": created, "snapshot": snapshot.model_dump(mode="json") if snapshot else None}


@router.delete("/{session_id}", response_model=SignalResponse)
async def end_session(session_id: str):
    applied = await _registry().end_session(session_id)
    return SignalResponse(session_id=session_id, applied=applied)


@router.get("/{session_id}")
async def get_snapshot(session_id: str):
    snapshot = _registry().snapshot(session_id)
    if snapshot is None:
        raise HTTPException(404, "Session not found.")
    return snapshot.model_dump(mode="json")


# ── Signals ───────────────────────────────────────────────────

@router.post("/{session_id}/events", status_code=202)
async def ingest_events(session_id: str, batch: EventBatch):
    """Queue raw interactions for the session's aggregator.

    Malformed samples are dropped and counted in ``rejected``; the valid ones
    in the same batch are still queued in order.
    """
    if session_id not in _registry():
        return {"session_id": session_id, "applied": False, "queued": 0, "rejected": 0}

    events: list[InteractionEvent] = []
    rejected = 0
    for index, raw in enumerate(batch.events):
        try:
            events.append(InteractionEvent.model_validate(raw))
        except ValidationError as exc:
            rejected += 1
            logger.warning(
                "ingest.rejected_sample",
                session=session_id,
                index=index,
                error=exc.errors(include_url=False)[0]["msg"],
            )

    queued = _pipeline().publish_batch(session_id, events) if events else 0
    return {
        "session_id": session_id,
        "applied": queued > 0,
        "queued": queued,
        "rejected": rejected,
    }


@router.put("/{session_id}/context", response_model=SignalResponse)
async def set_context(session_id: str, req: ContextUpdate):
    if req.category is None and req.url is None:
        raise HTTPException(422, "Provide 'category' or 'url'.")
    applied = await _registry().set_context(session_id, category=req.category, url=req.url)
    return SignalResponse(session_id=session_id, applied=applied)


@router.put("/{session_id}/mode", response_model=SignalResponse)
async def set_mode(session_id: str, req: ModeRequest):
    applied = await _registry().set_mode(session_id, req.mode, req.active)
    return SignalResponse(session_id=session_id, applied=applied)


@router.post("/{session_id}/complete", response_model=SignalResponse)
async def complete(session_id: str, req: CompleteRequest):
    applied = await _registry().complete(session_id, req.mode)
    return SignalResponse(session_id=session_id, applied=applied)


@router.put("/{session_id}/score")
async def set_score(session_id: str, req: ScoreRequest):
    """Force the score and re-evaluate immediately."""
    registry = _registry()
    output = await registry.set_score(session_id, req.score)
    if output is None:
        return {"session_id": session_id, "applied": False}
    return {
        "session_id": session_id,
        "applied": True,
        "level": output.new_level,
        "snapshot": registry.snapshot(session_id).model_dump(mode="json"),
    }
