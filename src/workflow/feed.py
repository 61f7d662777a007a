"""Per-viewer live request feed.

Subscribes to request events and keeps the set of requests a viewer may
see. Events for different requests can arrive in any order, and an older
notification for the same request may arrive after a newer one; the held
`revision` decides which one wins.

`sse_events` renders a feed as a Server-Sent Events stream for
`GET /api/requests/stream`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from src.routing.visibility import is_visible
from src.schemas.directory import Viewer
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

REQUEST_EVENTS = [EventType.REQUEST_CREATED, EventType.REQUEST_STATUS_CHANGED]

KEEPALIVE_SECONDS = 15.0


class RequestFeed:
    """Live view of the requests visible to one viewer."""

    def __init__(self, viewer: Viewer, initial: list[dict[str, Any]] | None = None) -> None:
        self.viewer = viewer
        self._items: dict[str, dict[str, Any]] = {}
        self._changes: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        for snapshot in initial or []:
            self.apply(snapshot)

    def apply(self, snapshot: dict[str, Any]) -> bool:
        """Merge one request snapshot. Returns True if the view changed."""
        request_id = snapshot.get("id")
        if not request_id:
            return False
        if not is_visible(self.viewer, snapshot):
            return False

        held = self._items.get(str(request_id))
        revision = int(snapshot.get("revision") or 0)
        if held is not None and revision <= int(held.get("revision") or 0):
            logger.debug("Ignoring stale revision %d for request %s", revision, request_id)
            return False

        self._items[str(request_id)] = dict(snapshot)
        return True

    async def on_event(self, event: SystemEvent) -> None:
        """Event bus handler; subscribe with `REQUEST_EVENTS`."""
        if event.event_type not in REQUEST_EVENTS:
            return
        if self.apply(event.data):
            self._changes.put_nowait(self._items[str(event.data["id"])])

    async def next_change(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Wait for the next accepted snapshot; None when `timeout` runs out."""
        try:
            return await asyncio.wait_for(self._changes.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def get(self, request_id: str) -> dict[str, Any] | None:
        return self._items.get(str(request_id))

    def snapshot(self) -> list[dict[str, Any]]:
        """Held requests, newest first."""
        return sorted(self._items.values(), key=lambda s: s.get("created_at") or "", reverse=True)

    def __len__(self) -> int:
        return len(self._items)


def sse_message(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def sse_events(
    feed: RequestFeed,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Initial `snapshot` message, then one `request` message per change.

    A comment line goes out every `keepalive` seconds without changes, so
    a dropped client is noticed.
    """
    yield sse_message("snapshot", feed.snapshot())
    while not await is_disconnected():
        change = await feed.next_change(keepalive)
        if change is None:
            yield ": keep-alive\n\n"
        else:
            yield sse_message("request", change)
