"""
ecanmesh — Attention Allocator

Economic attention allocation. Computes importance values from entity
activity and runs the periodic economic cycle over the attention store:

  ensure-initialized -> spread -> rent -> wages -> decay -> forget

The order is load-bearing. Rent and wages follow spreading so that
redistributed importance is taxed and rewarded, and both precede decay
and forgetting so that freshly-taxed values decay uniformly.

Currency accounting: rent moves STI into the bank, wages move bank
currency into STI. Currency that would land above max_sti or on negative
STI (debt) is returned to the bank, and the positive STI that decay
removes is recycled into the bank. Together these keep
``bank + sum(max(0, sti))`` constant across a cycle. New entities picked
up by ensure-initialized, and set_attention(), are external injections.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from ecanmesh.core.types import MeshEvent, MeshEventType
from ecanmesh.primitives.common import clamp, cosine_similarity, epoch_now
from ecanmesh.systems.attention.store import AttentionStore
from ecanmesh.systems.attention.types import (
    STRUCTURALLY_CRITICAL_TYPES,
    TYPE_LTI_BASELINE,
    AttentionContext,
    AttentionEntity,
    AttentionGraph,
    AttentionSnapshot,
    AttentionValue,
    CycleReport,
)

if TYPE_CHECKING:
    from ecanmesh.config import AttentionConfig
    from ecanmesh.core.event_bus import EventBus

logger = structlog.get_logger("ecanmesh.systems.attention.allocator")

# ─── STI heuristics ──────────────────────────────────────────────────

_RECENCY_WINDOW_S: float = 1000.0
_FREQUENCY_PER_ACTIVATION: float = 10.0
_FREQUENCY_CAP: float = 500.0
_ATTENTION_WEIGHT: float = 100.0
_ACTIVATION_WEIGHT: float = 50.0
_CONTEXT_WEIGHT: float = 200.0

# Context relevance components (sum to 1.0)
_CATEGORY_MATCH: float = 0.3
_TYPE_MATCH: float = 0.2
_EMBEDDING_WEIGHT: float = 0.5

# ─── LTI heuristics ──────────────────────────────────────────────────

_LONGEVITY_CAP_DAYS: float = 2000.0
_USAGE_PER_ACTIVATION: float = 5.0
_USAGE_CAP: float = 1000.0
_SECONDS_PER_DAY: float = 86_400.0

# Activation count above which structurally critical types earn VLTI
_VLTI_ACTIVATION_THRESHOLD: int = 100


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class AttentionAllocator:
    """
    Owns the attention economy: importance computation and the cycle.

    The single-step operations (spread_importance, collect_rent, ...) are
    unlocked primitives. run_cycle() and snapshot() take the shared lock,
    so two cycles never interleave and readers never see a half-applied
    cycle.
    """

    system_id: str = "attention"

    def __init__(
        self,
        config: AttentionConfig,
        store: AttentionStore | None = None,
        lock: asyncio.Lock | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = epoch_now,
    ) -> None:
        self._config = config
        self._store = store if store is not None else AttentionStore(config)
        self._lock = lock if lock is not None else asyncio.Lock()
        self._event_bus = event_bus
        self._clock = clock
        self._logger = logger.bind(component="attention_allocator")

        self._cycle_count: int = 0
        self._error_count: int = 0
        self._total_forgotten: int = 0
        self._last_report: CycleReport | None = None

    # ─── Importance Computation ──────────────────────────────────────

    def compute_attention(
        self,
        entity: AttentionEntity,
        context: AttentionContext | None = None,
    ) -> AttentionValue:
        """
        Compute an entity's importance from its activity record.

        Pure: does not touch the store. The result is clamped into bounds.
        """
        now = self._clock()
        sti = self._compute_sti(entity, context, now)
        lti = self._compute_lti(entity, now)
        return AttentionValue(
            sti=self._store.clamp_sti(sti),
            lti=self._store.clamp_lti(lti),
            vlti=self._compute_vlti(entity),
        )

    def _compute_sti(
        self,
        entity: AttentionEntity,
        context: AttentionContext | None,
        now: float,
    ) -> int:
        recency = 0.0
        if entity.last_activation is not None:
            since_s = max(0.0, now - entity.last_activation)
            recency = max(0.0, _RECENCY_WINDOW_S - since_s)

        frequency = min(_FREQUENCY_CAP, entity.activation_count * _FREQUENCY_PER_ACTIVATION)
        attention_bonus = entity.attention * _ATTENTION_WEIGHT
        activation_bonus = entity.activation * _ACTIVATION_WEIGHT

        sti = recency + frequency + attention_bonus + activation_bonus
        if context is not None:
            sti += self.context_relevance(entity, context) * _CONTEXT_WEIGHT

        return _round_half_up(sti)

    def _compute_lti(self, entity: AttentionEntity, now: float) -> int:
        baseline = TYPE_LTI_BASELINE.get(entity.type, 0)
        created = entity.created if entity.created is not None else now
        age_days = max(0.0, now - created) / _SECONDS_PER_DAY
        longevity = min(_LONGEVITY_CAP_DAYS, age_days)
        usage = min(_USAGE_CAP, entity.activation_count * _USAGE_PER_ACTIVATION)
        return _round_half_up(baseline + longevity + usage)

    @staticmethod
    def _compute_vlti(entity: AttentionEntity) -> bool:
        return entity.system_critical or (
            entity.type in STRUCTURALLY_CRITICAL_TYPES
            and entity.activation_count > _VLTI_ACTIVATION_THRESHOLD
        )

    @staticmethod
    def context_relevance(entity: AttentionEntity, context: AttentionContext) -> float:
        """Relevance in [0, 1] of an entity to the caller's current focus."""
        relevance = 0.0
        if context.category is not None and entity.category == context.category:
            relevance += _CATEGORY_MATCH
        if context.type is not None and entity.type == context.type:
            relevance += _TYPE_MATCH
        if context.embeddings and entity.embeddings:
            relevance += cosine_similarity(entity.embeddings, context.embeddings) * _EMBEDDING_WEIGHT
        return clamp(relevance, 0.0, 1.0)

    # ─── Store Access ────────────────────────────────────────────────

    def get_attention(self, entity_id: str) -> AttentionValue | None:
        return self._store.get(entity_id)

    def set_attention(self, entity_id: str, value: AttentionValue) -> AttentionValue:
        """Write a value (clamped into bounds). An external injection of currency."""
        return self._store.set(entity_id, value)

    def get_bank(self) -> int:
        return self._store.bank

    def total_currency(self) -> int:
        return self._store.total_currency()

    @property
    def store(self) -> AttentionStore:
        return self._store

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    # ─── Economic Primitives ─────────────────────────────────────────

    def _credit(self, entity_id: str, amount: int) -> int:
        """
        Add amount STI to an entity, returning the part that became
        positive STI. The remainder (overflow above max_sti or debt
        repaid on negative STI) is the caller's to return to the bank.
        """
        av = self._store.live(entity_id)
        if av is None or amount <= 0:
            return 0
        old = av.sti
        av.sti = self._store.clamp_sti(old + amount)
        return max(0, av.sti) - max(0, old)

    def spread_importance(self, graph: AttentionGraph) -> tuple[int, int]:
        """
        Spread STI along weighted edges.

        Per edge the transfer is floor(min(sti_src * spread_rate * weight,
        sti_src * max_spread_fraction)) and only happens when it exceeds 1,
        so no single edge ever moves more than 10% of the source's STI.
        Edges whose endpoints hold no value are skipped.

        Returns (transfers, total_amount_moved).
        """
        rate = self._config.spread_rate
        cap_fraction = self._config.max_spread_fraction
        transfers = 0
        moved = 0

        for edge in graph.edges:
            if edge.source == edge.target:
                continue
            source = self._store.live(edge.source)
            if source is None or not self._store.contains(edge.target):
                continue

            amount = math.floor(
                min(source.sti * rate * edge.weight, source.sti * cap_fraction)
            )
            if amount <= 1:
                continue

            source.sti = self._store.clamp_sti(source.sti - amount)
            gained = self._credit(edge.target, amount)
            if amount > gained:
                self._store.deposit(amount - gained)

            transfers += 1
            moved += amount

        return transfers, moved

    def collect_rent(self) -> int:
        """Tax every entity with positive STI into the bank. Returns total rent."""
        rate = self._config.rent_rate
        collected = 0
        for _, av in self._store.items():
            if av.sti <= 0:
                continue
            rent = math.floor(av.sti * rate)
            if rent <= 0:
                continue
            av.sti -= rent
            self._store.deposit(rent)
            collected += rent
        return collected

    def pay_wages(self) -> int:
        """
        Pay an equal share of bank * wage_rate to entities whose LTI is
        above the wage threshold, highest LTI first, while the bank can
        cover a full share. Returns the currency that left the bank.
        """
        pool = self._store.bank * self._config.wage_rate
        threshold = self._config.wage_lti_threshold
        candidates = sorted(
            ((eid, av) for eid, av in self._store.items() if av.lti > threshold),
            key=lambda pair: -pair[1].lti,
        )
        per_candidate = math.floor(pool / max(1, len(candidates)))
        if per_candidate <= 0:
            return 0

        paid = 0
        for entity_id, _ in candidates:
            if self._store.bank < per_candidate:
                continue
            gained = self._credit(entity_id, per_candidate)
            self._store.withdraw(gained)
            paid += gained
        return paid

    def decay(self) -> int:
        """
        Decay STI by decay_rate and LTI by sqrt(decay_rate).

        Returns the positive STI recycled into the bank.
        """
        sti_rate = self._config.decay_rate
        lti_rate = math.sqrt(sti_rate)
        recycled = 0
        for _, av in self._store.items():
            old = av.sti
            av.sti = self._store.clamp_sti(math.floor(old * sti_rate))
            av.lti = self._store.clamp_lti(math.floor(av.lti * lti_rate))
            recycled += max(0, old) - max(0, av.sti)
        if recycled > 0:
            self._store.deposit(recycled)
        return recycled

    def forget(self) -> list[str]:
        """Delete entities below the forgetting threshold unless VLTI. Returns their ids."""
        threshold = self._config.forgetting_threshold
        forgotten = [
            eid for eid, av in self._store.items()
            if av.sti < threshold and not av.vlti
        ]
        for eid in forgotten:
            self._store.delete(eid)
        self._total_forgotten += len(forgotten)
        return forgotten

    def ensure_initialized(self, graph: AttentionGraph) -> int:
        """Compute values for graph entities the store does not know yet."""
        created = 0
        for entity in graph.entities.values():
            if not self._store.contains(entity.id):
                self._store.set(entity.id, self.compute_attention(entity))
                created += 1
        return created

    # ─── The Cycle ───────────────────────────────────────────────────

    async def run_cycle(self, graph: AttentionGraph) -> CycleReport:
        """
        Run one full economic cycle under the shared lock.

        Exceptions propagate to the caller; the periodic attention loop
        catches and logs them.
        """
        async with self._lock:
            t0 = time.monotonic()
            try:
                initialized = self.ensure_initialized(graph)
                transfers, moved = self.spread_importance(graph)
                rent = self.collect_rent()
                wages = self.pay_wages()
                recycled = self.decay()
                forgotten = self.forget()
            except Exception as exc:
                self._error_count += 1
                self._logger.error(
                    "attention_cycle_error",
                    cycle=self._cycle_count + 1,
                    error=str(exc),
                )
                raise

            self._cycle_count += 1
            report = CycleReport(
                cycle_number=self._cycle_count,
                initialized=initialized,
                spread_transfers=transfers,
                spread_amount=moved,
                rent_collected=rent,
                wages_paid=wages,
                decay_recycled=recycled,
                forgotten=forgotten,
                bank=self._store.bank,
                elapsed_ms=round((time.monotonic() - t0) * 1000.0, 3),
            )
            self._last_report = report

        self._logger.debug(
            "attention_cycle_completed",
            cycle=report.cycle_number,
            entities=len(self._store),
            bank=report.bank,
            rent=rent,
            wages=wages,
            forgotten=len(forgotten),
        )
        await self._emit_cycle_events(report)
        return report

    async def _emit_cycle_events(self, report: CycleReport) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.emit(MeshEvent(
            event_type=MeshEventType.ATTENTION_CYCLE_COMPLETED,
            source_system=self.system_id,
            data={
                "cycle_number": report.cycle_number,
                "bank": report.bank,
                "rent_collected": report.rent_collected,
                "wages_paid": report.wages_paid,
            },
        ))
        if report.forgotten:
            await self._event_bus.emit(MeshEvent(
                event_type=MeshEventType.ENTITIES_FORGOTTEN,
                source_system=self.system_id,
                data={"entity_ids": list(report.forgotten)},
            ))

    # ─── Snapshot ────────────────────────────────────────────────────

    async def snapshot(self) -> AttentionSnapshot:
        """Frozen copy of all values and the bank, taken under the lock."""
        async with self._lock:
            return AttentionSnapshot(
                values=self._store.copy_values(),
                bank=self._store.bank,
                total_currency=self._store.total_currency(),
                cycle_count=self._cycle_count,
            )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._store.stats,
            "cycle_count": self._cycle_count,
            "error_count": self._error_count,
            "total_forgotten": self._total_forgotten,
        }
