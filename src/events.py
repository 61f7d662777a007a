"""In-process change feed.

Async pub/sub for SystemEvents. Every write in the portal emits an event;
the audit logger and live request feeds subscribe to them.

Usage:
    from src.events import emit, subscribe

    await emit(SystemEvent(
        event_type=EventType.REQUEST_CREATED,
        request_id=request.id,
        data=request_snapshot(request),
    ))

    subscribe(my_handler)  # async def my_handler(event: SystemEvent) -> None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue-backed dispatcher.

    Emitters never wait on subscribers: events go onto a queue drained by a
    background task. A failing subscriber is logged and isolated from the
    others.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventHandler] = []
        self._type_subscribers: dict[EventType, list[EventHandler]] = {}
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: list[EventType] | None = None) -> None:
        """Register a handler for all events, or only for `event_types`."""
        if event_types is None:
            self._subscribers.append(handler)
            logger.info("Registered global event subscriber: %s", _name(handler))
            return
        for et in event_types:
            self._type_subscribers.setdefault(et, []).append(handler)
        logger.info(
            "Registered event subscriber %s for types: %s",
            _name(handler),
            [t.value for t in event_types],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        if handler in self._subscribers:
            self._subscribers.remove(handler)
        for handlers in self._type_subscribers.values():
            if handler in handlers:
                handlers.remove(handler)

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Queue an event for delivery to subscribers."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        await self._queue.put(event)
        logger.debug("Event emitted: %s (request=%s)", event.event_type.value, event.request_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Deliver one event to every matching subscriber right away."""
        handlers = list(self._subscribers)
        handlers.extend(self._type_subscribers.get(event.event_type, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(event) for handler in handlers],
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed for event %s: %s",
                    _name(handler),
                    event.event_type.value,
                    result,
                )

    # ── Worker lifecycle ─────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
            logger.info("Event worker started")

    async def _drain(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            try:
                event = await queue.get()
            except asyncio.CancelledError:
                logger.info("Event worker shutting down")
                break
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error in event worker")
            finally:
                queue.task_done()

    async def start(self) -> None:
        """Create the queue and worker. Call during FastAPI lifespan startup."""
        self._queue = asyncio.Queue()
        self._ensure_worker()
        logger.info(
            "Event system started with %d global + %d typed subscribers",
            len(self._subscribers),
            sum(len(v) for v in self._type_subscribers.values()),
        )

    async def stop(self) -> None:
        """Drain pending events and stop the worker."""
        if self._queue is not None:
            await self._queue.join()

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        self._worker = None
        self._queue = None
        logger.info("Event system stopped")


def _name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", repr(handler))


# Module-level singleton and shortcuts
event_bus = EventBus()
subscribe = event_bus.subscribe
unsubscribe = event_bus.unsubscribe
start_event_system = event_bus.start
stop_event_system = event_bus.stop


async def emit(event: SystemEvent) -> None:
    """Publish a SystemEvent on the shared bus."""
    await event_bus.emit(event)
