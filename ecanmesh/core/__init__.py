"""
ecanmesh — Core Runtime

Periodic loops, the in-process event bus and their shared types.
"""

from ecanmesh.core.event_bus import EventBus
from ecanmesh.core.periodic import PeriodicTask
from ecanmesh.core.types import LoopState, MeshEvent, MeshEventType

__all__ = [
    "EventBus",
    "LoopState",
    "MeshEvent",
    "MeshEventType",
    "PeriodicTask",
]
