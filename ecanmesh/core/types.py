"""
ecanmesh — Core Runtime Types

Event and loop-state types shared by the event bus, the periodic loop
runtime and every system that emits events.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field

from ecanmesh.primitives.common import MeshBaseModel, new_id, utc_now


class MeshEventType(enum.StrEnum):
    """All event types emitted by ecanmesh systems."""

    # Node lifecycle
    NODE_ADDED = "node_added"
    NODE_REMOVED = "node_removed"
    NODE_OFFLINE = "node_offline"
    NODE_RECOVERED = "node_recovered"
    NODE_STATUS_CHANGED = "node_status_changed"

    # Work placement
    TASKS_DISTRIBUTED = "tasks_distributed"
    TASKS_MIGRATED = "tasks_migrated"
    REBALANCED = "rebalanced"

    # Metrics
    METRICS_COLLECTED = "metrics_collected"

    # Attention economy
    ATTENTION_CYCLE_COMPLETED = "attention_cycle_completed"
    ENTITIES_FORGOTTEN = "entities_forgotten"


class MeshEvent(MeshBaseModel):
    """A typed event emitted by any ecanmesh sub-system."""

    id: str = Field(default_factory=new_id)
    event_type: MeshEventType
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)
    source_system: str = "mesh"


class LoopState(MeshBaseModel):
    """Snapshot of a periodic loop's counters."""

    name: str
    running: bool = False
    interval_s: float = 0.0
    tick_count: int = 0
    error_count: int = 0
    overrun_count: int = 0
    last_elapsed_ms: float = 0.0
