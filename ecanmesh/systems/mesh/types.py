"""
ecanmesh — Mesh Type Definitions

Node records, strategy identifiers, and the metric and result records
produced by the topology, the load balancer and the coordinator.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, model_validator

from ecanmesh.primitives.common import (
    FrozenModel,
    MeshBaseModel,
    ResourceVector,
    epoch_now,
)
from ecanmesh.primitives.task import ScheduledTask


class NodeStatus(enum.StrEnum):
    ACTIVE = "active"
    BUSY = "busy"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"


# Statuses that count as online for rebalancing and metrics
ONLINE_STATUSES: frozenset[NodeStatus] = frozenset({NodeStatus.ACTIVE, NodeStatus.BUSY})


class BalancingStrategy(enum.StrEnum):
    ROUND_ROBIN = "round_robin"
    LEAST_LOAD = "least_load"
    WEIGHTED = "weighted"
    COGNITIVE_PRIORITY = "cognitive_priority"


class MeshNode(MeshBaseModel):
    """
    An in-process record of a compute node. ``endpoint`` is opaque: there
    is no transport behind it.
    """

    id: str
    endpoint: str = ""
    capabilities: set[str] = Field(default_factory=set)
    current_load: float = Field(0.0, ge=0.0, le=100.0)
    max_capacity: ResourceVector = Field(default_factory=ResourceVector)
    available: ResourceVector = Field(default_factory=ResourceVector)
    status: NodeStatus = NodeStatus.ACTIVE
    # Epoch seconds
    last_heartbeat: float = Field(default_factory=epoch_now)

    @model_validator(mode="after")
    def _check_available(self) -> MeshNode:
        if not self.available.fits_within(self.max_capacity):
            raise ValueError(
                f"Node {self.id!r}: available resources exceed max_capacity"
            )
        return self


class TopologySnapshot(FrozenModel):
    """
    Isolated copy of the mesh graph for external readers.

    Top-level fields are frozen; nested node records and routing dicts are
    deep copies, so mutating them never reaches the live registry.
    """

    nodes: dict[str, MeshNode] = Field(default_factory=dict)
    connections: dict[str, frozenset[str]] = Field(default_factory=dict)
    # source -> {destination -> next hop}, reachable pairs only
    routing_table: dict[str, dict[str, str]] = Field(default_factory=dict)
    taken_at: float = Field(default_factory=epoch_now)


class ResourceUtilization(MeshBaseModel):
    """Percent of summed capacity in use, per dimension."""

    cpu: float = 0.0
    memory: float = 0.0
    bandwidth: float = 0.0
    storage: float = 0.0


class AttentionFlowMetrics(MeshBaseModel):
    source_node_id: str = "coordinator"
    target_node_id: str
    task_id: str = ""
    flow_rate: float = 0.0
    latency: float = 0.0
    bandwidth: float = 0.0
    efficiency: float = 0.0
    timestamp: float = Field(default_factory=epoch_now)


class MeshPerformanceMetrics(MeshBaseModel):
    total_nodes: int = 0
    active_nodes: int = 0
    average_load: float = 0.0
    throughput: float = 0.0
    latency: float = 0.0
    attention_flow_rates: list[AttentionFlowMetrics] = Field(default_factory=list)
    resource_utilization: ResourceUtilization = Field(default_factory=ResourceUtilization)
    pending_tasks: int = 0
    timestamp: float = Field(default_factory=epoch_now)


class TaskPlacement(MeshBaseModel):
    """Ledger entry for a task the coordinator has placed on a node."""

    task: ScheduledTask
    node_id: str
    placed_at: float = Field(default_factory=epoch_now)
    migrations: int = 0


class RebalanceResult(MeshBaseModel):
    """
    Outcome of one rebalance pass.

    ``utilization_delta`` is the reduction in mean absolute deviation of
    load across the online nodes (positive means the mesh got more even).
    """

    moved_tasks: int = 0
    utilization_delta: float = 0.0
    migration_cost: float = 0.0
    success: bool = False
    overloaded: list[str] = Field(default_factory=list)
    underloaded: list[str] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "moved_tasks": self.moved_tasks,
            "utilization_delta": round(self.utilization_delta, 3),
            "migration_cost": self.migration_cost,
            "overloaded": self.overloaded,
            "underloaded": self.underloaded,
        }
