"""
ecanmesh — Event Bus

In-memory event publication for external collaborators (visualiser,
reporting, orchestrators). There is no transport: subscribers are async
callbacks in the same process.

Callers emit after releasing the shared state lock, so a subscriber may
safely read a snapshot from the service that emitted the event.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable, Coroutine
from typing import Any

import structlog

from ecanmesh.core.types import MeshEvent, MeshEventType

logger = structlog.get_logger("ecanmesh.core.event_bus")

# Callback signature: async def handler(event: MeshEvent) -> None
EventCallback = Callable[[MeshEvent], Coroutine[Any, Any, None]]

# Maximum time a callback gets before we log a warning and move on
_CALLBACK_TIMEOUT_S: float = 0.1

# Maximum recent events to keep in the ring buffer per event type
_RECENT_BUFFER_SIZE: int = 100


class EventBus:
    """
    Inter-system event bus.

    Every callback runs with timeout protection; a failing or slow
    subscriber is logged and skipped, never propagated to the emitter.
    """

    def __init__(self, callback_timeout_s: float = _CALLBACK_TIMEOUT_S) -> None:
        self._callback_timeout_s = callback_timeout_s
        self._logger = logger.bind(component="event_bus")

        # Per-type callback registrations
        self._subscribers: dict[MeshEventType, list[EventCallback]] = defaultdict(list)
        # Catch-all subscribers (receive every event)
        self._global_subscribers: list[EventCallback] = []

        # Ring buffers for recent event history
        self._recent: dict[MeshEventType, deque[MeshEvent]] = defaultdict(
            lambda: deque(maxlen=_RECENT_BUFFER_SIZE)
        )

        # Metrics
        self._total_emitted: int = 0
        self._total_callback_errors: int = 0
        self._total_callback_timeouts: int = 0

    # ─── Subscription ────────────────────────────────────────────────

    def subscribe(self, event_type: MeshEventType, callback: EventCallback) -> None:
        """Register a callback for a specific event type."""
        self._subscribers[event_type].append(callback)

    def subscribe_all(self, callback: EventCallback) -> None:
        """Register a callback that receives every event."""
        self._global_subscribers.append(callback)

    def unsubscribe(self, event_type: MeshEventType, callback: EventCallback) -> None:
        callbacks = self._subscribers.get(event_type)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    # ─── Emission ────────────────────────────────────────────────────

    async def emit(self, event: MeshEvent) -> None:
        """Publish an event to all registered listeners."""
        self._total_emitted += 1
        self._recent[event.event_type].append(event)

        callbacks = list(self._subscribers.get(event.event_type, []))
        callbacks.extend(self._global_subscribers)
        if callbacks:
            await self._dispatch_callbacks(callbacks, event)

    async def _dispatch_callbacks(
        self,
        callbacks: list[EventCallback],
        event: MeshEvent,
    ) -> None:
        """Dispatch event to callbacks with per-callback timeout protection."""
        for callback in callbacks:
            try:
                await asyncio.wait_for(
                    callback(event),
                    timeout=self._callback_timeout_s,
                )
            except TimeoutError:
                self._total_callback_timeouts += 1
                self._logger.warning(
                    "event_callback_timeout",
                    event_type=event.event_type.value,
                    callback=getattr(callback, "__name__", str(callback)),
                )
            except Exception as exc:
                self._total_callback_errors += 1
                self._logger.error(
                    "event_callback_error",
                    event_type=event.event_type.value,
                    error=str(exc),
                )

    # ─── Query ───────────────────────────────────────────────────────

    def recent(self, event_type: MeshEventType, limit: int = 10) -> list[MeshEvent]:
        """Return recent events of a given type (most recent first)."""
        buf = self._recent.get(event_type)
        if not buf:
            return []
        items = list(buf)
        items.reverse()
        return items[:limit]

    # ─── Stats ───────────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_emitted": self._total_emitted,
            "callback_errors": self._total_callback_errors,
            "callback_timeouts": self._total_callback_timeouts,
            "subscriber_count": sum(
                len(v) for v in self._subscribers.values()
            ) + len(self._global_subscribers),
            "recent_buffer_sizes": {
                et.value: len(buf) for et, buf in self._recent.items()
            },
        }
