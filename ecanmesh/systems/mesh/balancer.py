"""
ecanmesh — Load Balancer

Places tasks on mesh nodes and periodically evens out node load.

Four node selectors, one per BalancingStrategy:
  RoundRobinSelector         — cycles through candidates with its own cursor
  LeastLoadSelector          — lowest current_load wins
  WeightedSelector           — random pick weighted by spare load (100 - load)
  CognitivePrioritySelector  — 0.4*(1 - load/100) + 0.3*resource_fit + 0.3*capability_match

Selectors only ever see nodes that can fit the task, so a selector never
has to check feasibility itself.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog

from ecanmesh.primitives.common import RESOURCE_DIMENSIONS, ResourceVector
from ecanmesh.systems.mesh.types import BalancingStrategy, MeshNode, RebalanceResult

if TYPE_CHECKING:
    from ecanmesh.config import MeshConfig
    from ecanmesh.primitives.task import ScheduledTask
    from ecanmesh.systems.mesh.topology import MeshTopology

logger = structlog.get_logger("ecanmesh.systems.mesh.balancer")


# ─── Scoring Helpers ─────────────────────────────────────────────


def resource_fit(requirements: ResourceVector, available: ResourceVector) -> float:
    """
    How snugly a task fills a node, in [0, 1]. Tighter fits score higher
    so large nodes stay free for large tasks. 0 if the task does not fit.
    """
    if not requirements.fits_within(available):
        return 0.0
    scores: list[float] = []
    for dim in RESOURCE_DIMENSIONS:
        avail = getattr(available, dim)
        scores.append(min(1.0, getattr(requirements, dim) / avail) if avail > 0 else 0.0)
    return sum(scores) / len(scores)


def resource_match(available: ResourceVector, requirements: ResourceVector) -> float:
    """Mean per-dimension coverage of the requirements, in [0, 1]."""
    scores: list[float] = []
    for dim in RESOURCE_DIMENSIONS:
        req = getattr(requirements, dim)
        scores.append(1.0 if req <= 0 else min(1.0, getattr(available, dim) / req))
    return sum(scores) / len(scores)


def capability_match(node: MeshNode, task: ScheduledTask, default: float = 0.5) -> float:
    """Fraction of the task's required capabilities the node offers."""
    required = task.inferred_capabilities()
    if not required:
        return default
    return sum(1 for cap in required if cap in node.capabilities) / len(required)


# ─── Selectors ───────────────────────────────────────────────────


class NodeSelector(ABC):
    """
    Picks one node for a task. ``candidates`` is never empty when called
    by the LoadBalancer, and every candidate can fit the task.
    """

    strategy: BalancingStrategy | None = None

    @abstractmethod
    def select(self, task: ScheduledTask, candidates: list[MeshNode]) -> MeshNode | None: ...


class RoundRobinSelector(NodeSelector):
    strategy = BalancingStrategy.ROUND_ROBIN

    def __init__(self) -> None:
        self._cursor: int = 0

    def select(self, task: ScheduledTask, candidates: list[MeshNode]) -> MeshNode | None:
        if not candidates:
            return None
        node = candidates[self._cursor % len(candidates)]
        self._cursor += 1
        return node


class LeastLoadSelector(NodeSelector):
    strategy = BalancingStrategy.LEAST_LOAD

    def select(self, task: ScheduledTask, candidates: list[MeshNode]) -> MeshNode | None:
        if not candidates:
            return None
        # min() keeps the first of equal loads
        return min(candidates, key=lambda n: n.current_load)


class WeightedSelector(NodeSelector):
    strategy = BalancingStrategy.WEIGHTED

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def select(self, task: ScheduledTask, candidates: list[MeshNode]) -> MeshNode | None:
        if not candidates:
            return None
        weights = [100.0 - n.current_load for n in candidates]
        total = sum(weights)
        if total <= 0:
            return candidates[0]

        pick = self._rng.random() * total
        for node, weight in zip(candidates, weights, strict=True):
            pick -= weight
            if pick <= 0:
                return node
        return candidates[-1]


class CognitivePrioritySelector(NodeSelector):
    strategy = BalancingStrategy.COGNITIVE_PRIORITY

    def score(self, task: ScheduledTask, node: MeshNode) -> float:
        return (
            0.4 * (1.0 - node.current_load / 100.0)
            + 0.3 * resource_fit(task.resource_requirements, node.available)
            + 0.3 * capability_match(node, task)
        )

    def select(self, task: ScheduledTask, candidates: list[MeshNode]) -> MeshNode | None:
        if not candidates:
            return None
        best = candidates[0]
        best_score = self.score(task, best)
        for node in candidates[1:]:
            s = self.score(task, node)
            if s > best_score:
                best, best_score = node, s
        return best


def build_selector(
    strategy: BalancingStrategy | str,
    rng: random.Random | None = None,
) -> NodeSelector:
    """Instantiate the built-in selector for a strategy."""
    strategy = BalancingStrategy(strategy)
    if strategy == BalancingStrategy.ROUND_ROBIN:
        return RoundRobinSelector()
    if strategy == BalancingStrategy.LEAST_LOAD:
        return LeastLoadSelector()
    if strategy == BalancingStrategy.WEIGHTED:
        return WeightedSelector(rng)
    return CognitivePrioritySelector()


# ─── Load Balancer ───────────────────────────────────────────────


class LoadBalancer:
    """
    Batch placement and load rebalancing over a MeshTopology.

    Pure with respect to node resources: distribute_load() plans against a
    shadow copy and never mutates the topology. rebalance() writes the new
    simulated loads back to the topology.
    """

    def __init__(self, config: MeshConfig, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng
        self._logger = logger.bind(component="load_balancer")
        self._selector: NodeSelector = build_selector(config.strategy, rng)

        self._total_placed: int = 0
        self._total_dropped: int = 0
        self._total_moved: int = 0
        self._rebalance_passes: int = 0

    # ─── Strategy ────────────────────────────────────────────────────

    @property
    def selector(self) -> NodeSelector:
        return self._selector

    @property
    def strategy(self) -> BalancingStrategy | None:
        return self._selector.strategy

    def set_strategy(self, strategy: BalancingStrategy | str) -> None:
        self._selector = build_selector(strategy, self._rng)
        self._logger.info("strategy_changed", strategy=BalancingStrategy(strategy).value)

    def set_selector(self, selector: NodeSelector) -> None:
        """Plug in a custom selector."""
        self._selector = selector
        self._logger.info("selector_changed", selector=type(selector).__name__)

    # ─── Distribution ────────────────────────────────────────────────

    def distribute_load(
        self,
        tasks: Iterable[ScheduledTask],
        topology: MeshTopology,
    ) -> dict[str, list[ScheduledTask]]:
        """
        Assign tasks to active nodes in input order.

        Each task is offered only the nodes whose remaining shadow resources
        can fit it. Tasks with no feasible node are dropped from the result.
        """
        active = topology.active_nodes()
        remaining: dict[str, ResourceVector] = {
            n.id: n.available.model_copy() for n in active
        }
        distribution: dict[str, list[ScheduledTask]] = {}
        dropped: list[str] = []

        for task in tasks:
            req = task.resource_requirements
            candidates = [
                n.model_copy(update={"available": remaining[n.id]})
                for n in active
                if req.fits_within(remaining[n.id])
            ]
            chosen = self._selector.select(task, candidates) if candidates else None
            if chosen is None or chosen.id not in remaining:
                dropped.append(task.id)
                continue

            distribution.setdefault(chosen.id, []).append(task)
            remaining[chosen.id] = remaining[chosen.id].subtract(req)

        placed = sum(len(v) for v in distribution.values())
        self._total_placed += placed
        self._total_dropped += len(dropped)
        if dropped:
            self._logger.info("tasks_unplaceable", task_ids=dropped, active_nodes=len(active))
        self._logger.debug("load_distributed", placed=placed, nodes=len(distribution))
        return distribution

    # ─── Rebalancing ─────────────────────────────────────────────────

    def rebalance(self, topology: MeshTopology) -> RebalanceResult:
        """
        Move simulated task units from overloaded to underloaded nodes.

        Over online (active or busy) nodes: overloaded means load >= mean +
        rebalance_threshold, underloaded means load <= mean - threshold. Each
        over/under pair exchanges units of ``load_per_unit`` while their gap is
        at least ``rebalance_target_gap``, up to ``max_units_per_pair``.
        """
        self._rebalance_passes += 1
        online = topology.online_nodes()
        if len(online) < 2:
            return RebalanceResult()

        cfg = self._config
        loads = {n.id: n.current_load for n in online}
        mean = sum(loads.values()) / len(loads)
        overloaded = [nid for nid, load in loads.items() if load >= mean + cfg.rebalance_threshold]
        underloaded = [nid for nid, load in loads.items() if load <= mean - cfg.rebalance_threshold]
        deviation_before = _mean_abs_deviation(loads.values())

        moved = 0
        for over in overloaded:
            for under in underloaded:
                units = 0
                while (
                    units < cfg.max_units_per_pair
                    and loads[over] - loads[under] >= cfg.rebalance_target_gap
                ):
                    loads[over] -= cfg.load_per_unit
                    loads[under] += cfg.load_per_unit
                    units += 1
                moved += units

        for nid, load in loads.items():
            topology.set_load(nid, load)

        result = RebalanceResult(
            moved_tasks=moved,
            utilization_delta=deviation_before - _mean_abs_deviation(loads.values()),
            migration_cost=moved * cfg.migration_cost_per_unit,
            success=moved > 0,
            overloaded=overloaded,
            underloaded=underloaded,
        )
        self._total_moved += moved
        if moved:
            self._logger.info("mesh_rebalanced", **result.summary())
        return result

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value if self.strategy else type(self._selector).__name__,
            "total_placed": self._total_placed,
            "total_dropped": self._total_dropped,
            "total_moved": self._total_moved,
            "rebalance_passes": self._rebalance_passes,
        }


def _mean_abs_deviation(values: Iterable[float]) -> float:
    items = list(values)
    if not items:
        return 0.0
    mean = sum(items) / len(items)
    return sum(abs(v - mean) for v in items) / len(items)
