"""
ecanmesh — Task Primitives

The unit of work the scheduler admits and the load balancer places.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from ecanmesh.primitives.common import MeshBaseModel, ResourceVector, utc_now

# Requirement above which a task needs a node with the matching "high-*" capability
_HIGH_RESOURCE_THRESHOLD: float = 1000.0

# Task id fragments that imply a capability
_ID_CAPABILITY_HINTS: dict[str, str] = {
    "nlp": "natural-language",
    "vision": "computer-vision",
    "reasoning": "logical-reasoning",
}


class ScheduledTask(MeshBaseModel):
    """
    A caller-created piece of work. Transient: consumed once placed.

    ``required_capabilities`` may be left empty, in which case the
    capabilities are inferred from the resource profile and the task id.
    """

    id: str
    node_id: str | None = None
    priority: float = Field(0.0, ge=0.0)
    estimated_cost: float = Field(0.0, ge=0.0)
    resource_requirements: ResourceVector = Field(default_factory=ResourceVector)
    deadline: float | None = None
    dependencies: list[str] = Field(default_factory=list)
    required_capabilities: list[str] = Field(default_factory=list)

    def inferred_capabilities(self) -> list[str]:
        if self.required_capabilities:
            return list(self.required_capabilities)

        req = self.resource_requirements
        caps: list[str] = []
        if req.cpu > _HIGH_RESOURCE_THRESHOLD:
            caps.append("high-cpu")
        if req.memory > _HIGH_RESOURCE_THRESHOLD:
            caps.append("high-memory")
        if req.bandwidth > _HIGH_RESOURCE_THRESHOLD:
            caps.append("high-bandwidth")
        if req.storage > _HIGH_RESOURCE_THRESHOLD:
            caps.append("high-storage")
        for fragment, capability in _ID_CAPABILITY_HINTS.items():
            if fragment in self.id:
                caps.append(capability)
        return caps


class ResourceAllocation(MeshBaseModel):
    """Retained record of an accepted task's resource grant."""

    task_id: str
    node_id: str | None = None
    allocated_cpu: float = 0.0
    allocated_memory: float = 0.0
    priority: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)
