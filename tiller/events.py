"""In-memory event hub for runtime notifications."""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable

from loguru import logger


Listener = Callable[[dict[str, Any]], Awaitable[None] | None]

# Subscribe to this kind to receive every event.
ANY = "*"


class EventHub:
    """Named-kind event store + pub/sub.

    Components publish notifications (``tool:executing``, ``hook:error``,
    ``stop``, ...) and embedding code subscribes to the kinds it cares about.
    A failing listener is logged and never breaks the publisher.
    """

    def __init__(self, max_events: int = 5000):
        self._events: list[dict[str, Any]] = []
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._cond = asyncio.Condition()
        self._max_events = max_events

    def subscribe(self, kind: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners[kind].append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners[kind].remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    async def publish(self, kind: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        event = {
            "id": f"evt_{uuid.uuid4().hex[:12]}",
            "type": kind,
            "ts": time.time(),
            "payload": payload or {},
        }
        self._events.append(event)
        if len(self._events) > self._max_events:
            del self._events[: len(self._events) - self._max_events]

        for listener in [*self._listeners.get(kind, []), *self._listeners.get(ANY, [])]:
            try:
                res = listener(event)
                if inspect.isawaitable(res):
                    await res
            except Exception as e:
                logger.error(f"Event listener for '{kind}' failed: {e}")

        async with self._cond:
            self._cond.notify_all()
        return event

    def get_since(self, last_event_id: str | None = None, kind: str | None = None) -> list[dict[str, Any]]:
        """Get events after `last_event_id` (exclusive), optionally of one kind."""
        events = list(self._events)
        if last_event_id:
            for i, event in enumerate(events):
                if event["id"] == last_event_id:
                    events = events[i + 1 :]
                    break
        if kind:
            events = [e for e in events if e["type"] == kind]
        return events

    async def wait_for_new(self, timeout_s: float = 15.0) -> bool:
        try:
            async with self._cond:
                await asyncio.wait_for(self._cond.wait(), timeout=timeout_s)
            return True
        except asyncio.TimeoutError:
            return False
