"""
ecanmesh — Common Primitives

Shared base classes, the resource quadruple, and small utilities used
across the attention, scheduler and mesh systems.
"""

from __future__ import annotations

import math
import time
from collections.abc import Sequence
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def epoch_now() -> float:
    """Wall-clock seconds since the epoch. Default clock for heartbeats and activity."""
    return time.time()


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp *value* to the [lo, hi] range."""
    return max(lo, min(hi, value))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity between two vectors. Returns 0.0 on degenerate input."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=False))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


# ─── Base Models ──────────────────────────────────────────────────


class MeshBaseModel(BaseModel):
    """Base model for all ecanmesh records."""

    model_config = {"populate_by_name": True, "from_attributes": True}


class FrozenModel(BaseModel):
    """Immutable record handed to external readers."""

    model_config = {"populate_by_name": True, "from_attributes": True, "frozen": True}


# ─── Resources ────────────────────────────────────────────────────


RESOURCE_DIMENSIONS: tuple[str, ...] = ("cpu", "memory", "bandwidth", "storage")


class ResourceVector(MeshBaseModel):
    """
    Non-negative resource quadruple.

    Used both as a requirement (what a task needs) and as a capacity
    (what a node or a scheduling budget offers).
    """

    cpu: float = Field(0.0, ge=0.0)
    memory: float = Field(0.0, ge=0.0)
    bandwidth: float = Field(0.0, ge=0.0)
    storage: float = Field(0.0, ge=0.0)

    def total(self) -> float:
        return self.cpu + self.memory + self.bandwidth + self.storage

    def fits_within(self, capacity: ResourceVector) -> bool:
        """True when every dimension of self is <= the same dimension of capacity."""
        return (
            self.cpu <= capacity.cpu
            and self.memory <= capacity.memory
            and self.bandwidth <= capacity.bandwidth
            and self.storage <= capacity.storage
        )

    def subtract(self, other: ResourceVector) -> ResourceVector:
        """Return self - other. Caller guarantees other.fits_within(self)."""
        return ResourceVector(
            cpu=max(0.0, self.cpu - other.cpu),
            memory=max(0.0, self.memory - other.memory),
            bandwidth=max(0.0, self.bandwidth - other.bandwidth),
            storage=max(0.0, self.storage - other.storage),
        )

    def add(self, other: ResourceVector) -> ResourceVector:
        return ResourceVector(
            cpu=self.cpu + other.cpu,
            memory=self.memory + other.memory,
            bandwidth=self.bandwidth + other.bandwidth,
            storage=self.storage + other.storage,
        )
