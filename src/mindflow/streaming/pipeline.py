"""Async ingestion pipeline connecting page event producers → session aggregators."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from mindflow.models import InteractionEvent

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class QueuedInteraction:
    """An interaction event addressed to one session."""

    session_id: str
    event: InteractionEvent


class StreamPipeline:
    """In-process async pipeline that buffers interaction events and forwards
    them, in arrival order, to registered consumers (e.g. the session
    registry's aggregators).

    The pipeline decouples producers (HTTP ingestion) from consumers using
    an :class:`asyncio.Queue`.  When the queue is full new events are
    dropped and counted rather than blocking the producer.
    """

    def __init__(self, maxsize: int = 10_000) -> None:
        self._queue: asyncio.Queue[QueuedInteraction] = asyncio.Queue(maxsize=maxsize)
        self._consumers: list[Callable[[QueuedInteraction], Awaitable[None]]] = []
        self._running = False
        self._processed_total = 0
        self._dropped_total = 0

    # ── Configuration ─────────────────────────────────────────

    def add_consumer(self, fn: Callable[[QueuedInteraction], Awaitable[None]]) -> None:
        """Register an async callback that receives every queued interaction."""
        self._consumers.append(fn)

    # ── Producer side ─────────────────────────────────────────

    def publish(self, session_id: str, event: InteractionEvent) -> bool:
        """Enqueue *event* for *session_id*. Return ``False`` if it was dropped."""
        try:
            self._queue.put_nowait(QueuedInteraction(session_id, event))
        except asyncio.QueueFull:
            self._dropped_total += 1
            logger.warning("stream_pipeline.dropped", session=session_id, dropped_total=self._dropped_total)
            return False
        return True

    def publish_batch(self, session_id: str, events: list[InteractionEvent]) -> int:
        """Enqueue many events; return how many were accepted."""
        return sum(1 for e in events if self.publish(session_id, e))

    # ── Consumer loop ─────────────────────────────────────────

    async def start(self) -> None:
        """Start the consumer loop (run as a background task)."""
        self._running = True
        logger.info("stream_pipeline.started", consumers=len(self._consumers))

        last_stats_time = time.monotonic()

        while self._running:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            for consumer in self._consumers:
                try:
                    await consumer(item)
                except Exception as exc:
                    logger.error(
                        "stream_pipeline.consumer_error",
                        consumer=getattr(consumer, "__qualname__", repr(consumer)),
                        error=str(exc),
                    )

            self._processed_total += 1
            self._queue.task_done()

            # Periodic stats every 60 seconds
            now = time.monotonic()
            if now - last_stats_time >= 60:
                logger.info(
                    "stream_pipeline.stats",
                    processed_total=self._processed_total,
                    dropped_total=self._dropped_total,
                    queue_pending=self._queue.qsize(),
                )
                last_stats_time = now

    async def drain(self) -> None:
        """Wait until every queued interaction has been consumed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Gracefully stop the consumer loop."""
        self._running = False
        logger.info("stream_pipeline.stopped")

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def processed(self) -> int:
        return self._processed_total

    @property
    def dropped(self) -> int:
        return self._dropped_total
