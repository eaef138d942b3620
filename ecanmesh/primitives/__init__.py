"""
ecanmesh — Shared Primitives

Base models, the resource quadruple and the task record every system speaks.
"""

from ecanmesh.primitives.common import (
    RESOURCE_DIMENSIONS,
    FrozenModel,
    MeshBaseModel,
    ResourceVector,
    clamp,
    cosine_similarity,
    epoch_now,
    new_id,
    utc_now,
)
from ecanmesh.primitives.task import ResourceAllocation, ScheduledTask

__all__ = [
    "RESOURCE_DIMENSIONS",
    "FrozenModel",
    "MeshBaseModel",
    "ResourceAllocation",
    "ResourceVector",
    "ScheduledTask",
    "clamp",
    "cosine_similarity",
    "epoch_now",
    "new_id",
    "utc_now",
]
