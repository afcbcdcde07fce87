"""FastAPI application — session endpoints, event ingestion and WebSocket feed.

This module wires together all infrastructure:
- CORS + API key auth middleware
- Engine configuration table
- Event publisher (log, webhook, WebSocket)
- Session registry with per-session 1 Hz ticking
- Ingestion pipeline feeding the aggregators
- Best-effort snapshot persistence
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect

from mindflow import __version__
from mindflow.api.middleware import setup_middleware
from mindflow.api.routes.sessions import router as sessions_router
from mindflow.api.websocket import WebSocketHandler, ws_manager
from mindflow.config import get_settings
from mindflow.engine.config import load_engine_config
from mindflow.notifications.handlers import create_publisher
from mindflow.registry.service import SessionRegistry
from mindflow.storage.database import dispose_db, init_db
from mindflow.storage.repository import SnapshotRepository
from mindflow.streaming.pipeline import QueuedInteraction, StreamPipeline

logger = structlog.get_logger(__name__)

# ── Shared state (initialised in lifespan) ────────────────────

_registry: SessionRegistry | None = None
_pipeline: StreamPipeline | None = None
_pipeline_task: asyncio.Task | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hooks."""
    global _registry, _pipeline, _pipeline_task

    settings = get_settings()

    # 1. Engine table
    config = load_engine_config(settings)

    # 2. Snapshot storage
    snapshot_repo: SnapshotRepository | None = None
    if settings.persist_snapshots:
        await init_db()
        snapshot_repo = SnapshotRepository()
        logger.info("server.db_ready")

    # 3. Event delivery
    publisher = create_publisher(settings)
    publisher.add_handler(WebSocketHandler(ws_manager))

    # 4. Sessions
    _registry = SessionRegistry(config, publisher, snapshot_repo=snapshot_repo)

    # 5. Ingestion pipeline
    _pipeline = StreamPipeline(maxsize=settings.pipeline_maxsize)

    async def _on_interaction(item: QueuedInteraction) -> None:
        await _registry.record_interaction(item.session_id, item.event)  # type: ignore[union-attr]

    _pipeline.add_consumer(_on_interaction)
    _pipeline_task = asyncio.create_task(_pipeline.start())

    logger.info("server.started", port=settings.api_port, handlers=publisher.handler_names)

    yield  # ← application runs

    # Shutdown
    if _pipeline:
        await _pipeline.stop()
    if _pipeline_task:
        _pipeline_task.cancel()
    if _registry:
        await _registry.shutdown()
    if settings.persist_snapshots:
        await dispose_db()
    _registry = None
    _pipeline = None
    _pipeline_task = None
    logger.info("server.stopped")


app = FastAPI(
    title="MindFlow API",
    description="Per-session digital stress scoring and intervention levels.",
    version=__version__,
    lifespan=lifespan,
)

# ── Middleware ────────────────────────────────────────────────
setup_middleware(app)

# ── Routers ───────────────────────────────────────────────────
app.include_router(sessions_router)


# ── System ────────────────────────────────────────────────────

@app.get("/health", tags=["system"])
async def health():
    return {
        "status": "ok",
        "version": __version__,
        "sessions": len(_registry) if _registry else 0,
        "pipeline_pending": _pipeline.pending if _pipeline else 0,
        "ws_clients": ws_manager.client_count,
    }


@app.get("/config", tags=["system"])
async def engine_config():
    """Return the active engine constant table."""
    config = _registry.config if _registry else load_engine_config()
    return config.model_dump(mode="json")


@app.get("/stats", tags=["system"])
async def stats():
    return {
        "registry": _registry.stats if _registry else {},
        "pipeline": {
            "pending": _pipeline.pending if _pipeline else 0,
            "processed": _pipeline.processed if _pipeline else 0,
            "dropped": _pipeline.dropped if _pipeline else 0,
        },
        "websocket": {
            **ws_manager.stats.snapshot(),
            "subscribers": ws_manager.channel_breakdown(),
        },
    }


# ── WebSocket (real-time event feed) ─────────────────────────

@app.websocket("/ws/sessions/{session_id}")
async def ws_session(ws: WebSocket, session_id: str, snapshot: bool = Query(True)):
    """Stream ``level_changed`` / ``suggestion`` events of one session.

    Connect to ``/ws/sessions/all`` to receive every session's events.
    The current snapshot is sent first unless ``?snapshot=false``.
    """
    await ws_manager.connect(ws, session_id)
    try:
        if snapshot and _registry is not None:
            current = _registry.snapshot(session_id)
            if current is not None:
                await ws.send_json({"type": "snapshot", **current.model_dump(mode="json")})
        while True:
            # Clients are read-only consumers; incoming text keeps the socket alive.
            await ws.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(ws)
