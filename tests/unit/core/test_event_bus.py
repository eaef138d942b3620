"""Tests for EventBus — in-process fan-out with failure isolation."""

from __future__ import annotations

import asyncio

import pytest

from ecanmesh.core.event_bus import EventBus
from ecanmesh.core.types import MeshEvent, MeshEventType


def _make_event(event_type: MeshEventType = MeshEventType.NODE_ADDED, **data) -> MeshEvent:
    return MeshEvent(event_type=event_type, data=data)


class TestDelivery:
    @pytest.mark.asyncio
    async def test_typed_subscriber_receives(self):
        bus = EventBus()
        received: list[MeshEvent] = []

        async def _handler(event: MeshEvent) -> None:
            received.append(event)

        bus.subscribe(MeshEventType.NODE_ADDED, _handler)
        await bus.emit(_make_event(node_id="a"))
        await bus.emit(_make_event(MeshEventType.NODE_REMOVED, node_id="a"))

        assert [e.event_type for e in received] == [MeshEventType.NODE_ADDED]

    @pytest.mark.asyncio
    async def test_global_subscriber_receives_all(self):
        bus = EventBus()
        received: list[MeshEventType] = []

        async def _handler(event: MeshEvent) -> None:
            received.append(event.event_type)

        bus.subscribe_all(_handler)
        await bus.emit(_make_event(MeshEventType.NODE_ADDED))
        await bus.emit(_make_event(MeshEventType.REBALANCED))

        assert received == [MeshEventType.NODE_ADDED, MeshEventType.REBALANCED]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received: list[MeshEvent] = []

        async def _handler(event: MeshEvent) -> None:
            received.append(event)

        bus.subscribe(MeshEventType.NODE_ADDED, _handler)
        bus.unsubscribe(MeshEventType.NODE_ADDED, _handler)
        await bus.emit(_make_event())

        assert received == []


class TestIsolation:
    @pytest.mark.asyncio
    async def test_failing_callback_does_not_propagate(self):
        bus = EventBus()
        received: list[MeshEvent] = []

        async def _broken(event: MeshEvent) -> None:
            raise RuntimeError("subscriber bug")

        async def _healthy(event: MeshEvent) -> None:
            received.append(event)

        bus.subscribe(MeshEventType.NODE_ADDED, _broken)
        bus.subscribe(MeshEventType.NODE_ADDED, _healthy)
        await bus.emit(_make_event())

        assert len(received) == 1
        assert bus.stats["callback_errors"] == 1

    @pytest.mark.asyncio
    async def test_slow_callback_times_out(self):
        bus = EventBus(callback_timeout_s=0.01)

        async def _slow(event: MeshEvent) -> None:
            await asyncio.sleep(1.0)

        bus.subscribe(MeshEventType.NODE_ADDED, _slow)
        await bus.emit(_make_event())

        assert bus.stats["callback_timeouts"] == 1


class TestRecent:
    @pytest.mark.asyncio
    async def test_recent_most_recent_first(self):
        bus = EventBus()
        for i in range(3):
            await bus.emit(_make_event(seq=i))

        recent = bus.recent(MeshEventType.NODE_ADDED, limit=2)

        assert [e.data["seq"] for e in recent] == [2, 1]
        assert bus.recent(MeshEventType.NODE_REMOVED) == []
        assert bus.stats["total_emitted"] == 3
