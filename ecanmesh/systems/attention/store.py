"""
ecanmesh — Attention Store

Per-entity importance values plus the global currency pool ("bank").

The store is the single owner of AttentionValues. Every write is clamped
into the configured bounds, so ``min_sti <= sti <= max_sti`` and
``0 <= lti <= max_lti`` hold at all times. Currency moves between the
bank and entities only through deposit() and withdraw(); the allocator
pairs each with an equal and opposite STI change, which is what keeps
``bank + sum(max(0, sti))`` conserved.

Not locked: the allocator serializes access through the shared lock.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

import structlog

from ecanmesh.systems.attention.types import AttentionValue

if TYPE_CHECKING:
    from ecanmesh.config import AttentionConfig

logger = structlog.get_logger("ecanmesh.systems.attention.store")


class AttentionStore:
    def __init__(self, config: AttentionConfig) -> None:
        self._config = config
        self._logger = logger.bind(component="attention_store")
        self._values: dict[str, AttentionValue] = {}
        self._bank: int = int(config.initial_bank)

    # ─── Bounds ──────────────────────────────────────────────────────

    def clamp_sti(self, sti: float) -> int:
        return int(max(self._config.min_sti, min(self._config.max_sti, sti)))

    def clamp_lti(self, lti: float) -> int:
        return int(max(0, min(self._config.max_lti, lti)))

    def sti_headroom(self, entity_id: str) -> int:
        """How much STI the entity can still absorb before hitting max_sti."""
        av = self._values.get(entity_id)
        if av is None:
            return 0
        return max(0, self._config.max_sti - av.sti)

    # ─── Values ──────────────────────────────────────────────────────

    def get(self, entity_id: str) -> AttentionValue | None:
        """Return a copy of the entity's value, or None if unknown."""
        av = self._values.get(entity_id)
        return av.model_copy() if av is not None else None

    def set(self, entity_id: str, value: AttentionValue) -> AttentionValue:
        """Store a clamped copy of value. Returns the stored copy."""
        stored = AttentionValue(
            sti=self.clamp_sti(value.sti),
            lti=self.clamp_lti(value.lti),
            vlti=value.vlti,
        )
        self._values[entity_id] = stored
        return stored.model_copy()

    def delete(self, entity_id: str) -> bool:
        return self._values.pop(entity_id, None) is not None

    def contains(self, entity_id: str) -> bool:
        return entity_id in self._values

    def live(self, entity_id: str) -> AttentionValue | None:
        """The stored record itself, for in-place updates by the allocator."""
        return self._values.get(entity_id)

    def items(self) -> Iterator[tuple[str, AttentionValue]]:
        """Iterate live (id, value) pairs over a stable copy of the keys."""
        for entity_id in list(self._values):
            av = self._values.get(entity_id)
            if av is not None:
                yield entity_id, av

    def __len__(self) -> int:
        return len(self._values)

    def copy_values(self) -> dict[str, AttentionValue]:
        return {eid: av.model_copy() for eid, av in self._values.items()}

    # ─── Bank ────────────────────────────────────────────────────────

    @property
    def bank(self) -> int:
        return self._bank

    def deposit(self, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"deposit amount must be >= 0, got {amount}")
        self._bank += amount

    def withdraw(self, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"withdraw amount must be >= 0, got {amount}")
        if amount > self._bank:
            raise ValueError(f"withdraw {amount} exceeds bank balance {self._bank}")
        self._bank -= amount

    def total_currency(self) -> int:
        """bank + sum(max(0, sti)). Conserved by every cycle phase."""
        return self._bank + sum(max(0, av.sti) for av in self._values.values())

    @property
    def stats(self) -> dict[str, Any]:
        stis = [av.sti for av in self._values.values()]
        return {
            "entities": len(self._values),
            "bank": self._bank,
            "total_currency": self.total_currency(),
            "vlti_count": sum(1 for av in self._values.values() if av.vlti),
            "sti_mean": round(sum(stis) / len(stis), 2) if stis else 0.0,
        }
