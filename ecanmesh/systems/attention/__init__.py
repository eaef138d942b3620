"""
ecanmesh — Attention

The economic attention bank: per-entity STI/LTI/VLTI values, a global
currency pool, and the spread -> rent -> wages -> decay -> forget cycle.
"""

from ecanmesh.systems.attention.allocator import AttentionAllocator
from ecanmesh.systems.attention.store import AttentionStore
from ecanmesh.systems.attention.types import (
    AttentionContext,
    AttentionEdge,
    AttentionEntity,
    AttentionGraph,
    AttentionSnapshot,
    AttentionValue,
    CycleReport,
    EntityType,
)

__all__ = [
    "AttentionAllocator",
    "AttentionStore",
    "AttentionContext",
    "AttentionEdge",
    "AttentionEntity",
    "AttentionGraph",
    "AttentionSnapshot",
    "AttentionValue",
    "CycleReport",
    "EntityType",
]
