"""
ecanmesh — Scheduler Type Definitions
"""

from __future__ import annotations

from pydantic import Field

from ecanmesh.primitives.common import MeshBaseModel
from ecanmesh.primitives.task import ScheduledTask


class SchedulingResult(MeshBaseModel):
    """
    Outcome of one schedule() call.

    Rejected tasks are not an error: they are simply absent from
    ``accepted``. Their ids are listed in ``rejected`` for convenience.
    """

    accepted: list[ScheduledTask] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    total_cost: float = 0.0
    attention_spent: int = 0
    # Percentage of the summed budget consumed by accepted tasks
    utilization: float = 0.0
