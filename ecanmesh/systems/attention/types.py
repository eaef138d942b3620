"""
ecanmesh — Attention Type Definitions

Data types for the economic attention bank: importance values, the
entities they are computed from, the explicit context struct, the
importance-spreading graph, and cycle reports.
"""

from __future__ import annotations

import enum

from pydantic import Field

from ecanmesh.primitives.common import FrozenModel, MeshBaseModel


class EntityType(enum.StrEnum):
    """Structural category of an attention entity."""

    CONCEPT = "concept"
    RELATION = "relation"
    CONTEXT = "context"
    STATE = "state"


# LTI baseline per entity type
TYPE_LTI_BASELINE: dict[EntityType, int] = {
    EntityType.CONCEPT: 1000,
    EntityType.RELATION: 800,
    EntityType.CONTEXT: 600,
    EntityType.STATE: 400,
}

# Types whose heavily-activated entities become very-long-term important
STRUCTURALLY_CRITICAL_TYPES: frozenset[EntityType] = frozenset(
    {EntityType.CONCEPT, EntityType.RELATION}
)


class AttentionValue(MeshBaseModel):
    """Short-, long- and very-long-term importance of one entity."""

    sti: int = 0
    lti: int = 0
    vlti: bool = False


class AttentionEntity(MeshBaseModel):
    """
    The activity record importance is computed from.

    Timestamps are epoch seconds. ``last_activation=None`` means the
    entity has never been activated (no recency bonus); ``created=None``
    means "created now" (no longevity bonus).
    """

    id: str
    type: EntityType = EntityType.CONCEPT
    activation: float = 0.0
    attention: float = 0.0
    last_activation: float | None = None
    activation_count: int = Field(0, ge=0)
    created: float | None = None
    category: str | None = None
    system_critical: bool = False
    embeddings: list[float] = Field(default_factory=list)


class AttentionContext(MeshBaseModel):
    """What the caller is currently focused on. Every field is optional."""

    category: str | None = None
    type: EntityType | None = None
    embeddings: list[float] = Field(default_factory=list)


class AttentionEdge(MeshBaseModel):
    """Directed importance-spreading link from ``source`` to ``target``."""

    source: str
    target: str
    weight: float = Field(1.0, ge=0.0)


class AttentionGraph(MeshBaseModel):
    """The entity graph a cycle runs over."""

    entities: dict[str, AttentionEntity] = Field(default_factory=dict)
    edges: list[AttentionEdge] = Field(default_factory=list)

    @classmethod
    def from_entities(
        cls,
        entities: list[AttentionEntity],
        edges: list[AttentionEdge] | None = None,
    ) -> AttentionGraph:
        return cls(entities={e.id: e for e in entities}, edges=list(edges or []))


class CycleReport(MeshBaseModel):
    """Outcome of one run_cycle()."""

    cycle_number: int
    initialized: int = 0
    spread_transfers: int = 0
    spread_amount: int = 0
    rent_collected: int = 0
    wages_paid: int = 0
    decay_recycled: int = 0
    forgotten: list[str] = Field(default_factory=list)
    bank: int = 0
    elapsed_ms: float = 0.0


class AttentionSnapshot(FrozenModel):
    """Isolated copy of the attention bank; nested values are copies."""

    values: dict[str, AttentionValue]
    bank: int
    total_currency: int
    cycle_count: int
