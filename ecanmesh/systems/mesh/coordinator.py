"""
ecanmesh — Mesh Coordinator

The single logical owner of the mesh. Wraps MeshTopology and LoadBalancer
behind the shared state lock and drives three periodic loops:

  health     every heartbeat_interval_s  — offline detection + task migration
  metrics    every metrics_interval_s    — MeshPerformanceMetrics history
  rebalance  every rebalance_interval_s  — pending-task retry + load rebalancing

The coordinator keeps a ledger of every task it placed. When a node is
removed or goes offline its tasks are redistributed over the remaining
active nodes; tasks that fit nowhere wait in a pending queue that the
rebalance loop retries. A task is in exactly one of {ledger, pending}
until complete_task() is called for it.

Events are collected while the lock is held and emitted after it is
released.
"""

from __future__ import annotations

import asyncio
import random
from collections import deque
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import structlog

from ecanmesh.core.periodic import PeriodicTask
from ecanmesh.core.types import LoopState, MeshEvent, MeshEventType
from ecanmesh.primitives.common import ResourceVector, epoch_now
from ecanmesh.systems.mesh.balancer import LoadBalancer, capability_match, resource_match
from ecanmesh.systems.mesh.topology import MeshTopology
from ecanmesh.systems.mesh.types import (
    ONLINE_STATUSES,
    AttentionFlowMetrics,
    MeshNode,
    MeshPerformanceMetrics,
    NodeStatus,
    RebalanceResult,
    ResourceUtilization,
    TaskPlacement,
    TopologySnapshot,
)

if TYPE_CHECKING:
    from ecanmesh.config import MeshConfig
    from ecanmesh.core.event_bus import EventBus
    from ecanmesh.primitives.task import ScheduledTask

logger = structlog.get_logger("ecanmesh.systems.mesh.coordinator")

# Flow metrics
_FLOW_PRIORITY_SCALE: float = 10.0
_FLOW_COMPLEXITY_SCALE: float = 100.0
_BASE_LATENCY_MS: float = 50.0
_LATENCY_PER_LOAD_POINT: float = 2.0
_DEFAULT_BANDWIDTH: float = 1000.0
# Window for the mesh-wide average latency
_LATENCY_WINDOW_S: float = 60.0


class MeshCoordinator:
    system_id: str = "mesh"

    def __init__(
        self,
        config: MeshConfig,
        lock: asyncio.Lock | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = epoch_now,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._lock = lock if lock is not None else asyncio.Lock()
        self._event_bus = event_bus
        self._clock = clock
        self._logger = logger.bind(component="mesh_coordinator")

        self._topology = MeshTopology(config)
        self._balancer = LoadBalancer(config, rng)

        self._placements: dict[str, TaskPlacement] = {}
        self._pending: dict[str, ScheduledTask] = {}

        self._performance_history: deque[MeshPerformanceMetrics] = deque(
            maxlen=config.max_history_size
        )
        self._flow_history: dict[str, deque[AttentionFlowMetrics]] = {}

        self._loops: list[PeriodicTask] = [
            PeriodicTask(
                "mesh_health",
                config.heartbeat_interval_s,
                self._health_tick,
                grace_s=config.shutdown_grace_s,
            ),
            PeriodicTask(
                "mesh_metrics",
                config.metrics_interval_s,
                self._metrics_tick,
                grace_s=config.shutdown_grace_s,
            ),
            PeriodicTask(
                "mesh_rebalance",
                config.rebalance_interval_s,
                self._rebalance_tick,
                grace_s=config.shutdown_grace_s,
            ),
        ]

        self._total_migrated: int = 0

    # ─── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> list[asyncio.Task[None]]:
        """Start the health, metrics and rebalance loops."""
        tasks = [loop.start() for loop in self._loops]
        self._logger.info("mesh_coordinator_started", nodes=len(self._topology))
        return tasks

    async def stop(self) -> None:
        """Stop every loop, waiting for in-progress ticks to finish."""
        await asyncio.gather(*(loop.stop() for loop in self._loops))
        self._logger.info("mesh_coordinator_stopped")

    @property
    def loops(self) -> list[LoopState]:
        return [loop.state for loop in self._loops]

    async def _health_tick(self) -> None:
        await self.check_health()

    async def _metrics_tick(self) -> None:
        await self.collect_metrics()

    async def _rebalance_tick(self) -> None:
        await self.rebalance()

    # ─── Membership ──────────────────────────────────────────────────

    async def add_node(self, node: MeshNode) -> MeshNode:
        """
        Register a node. Re-adding a known id keeps the ledger entries that
        still fit the new record and re-reserves them; the rest migrate.
        """
        events: list[tuple[MeshEventType, dict[str, Any]]] = []
        async with self._lock:
            replaced = node.id in self._topology
            stored = self._topology.add_node(node)
            if replaced:
                displaced = self._reapply_reservations(stored.id)
                if displaced:
                    events.append(self._migrate(displaced, source=stored.id))
            live = self._topology.get(stored.id)
            if live is not None:
                stored = live.model_copy(deep=True)
            peers = sorted(self._topology.neighbors(stored.id))
        await self._emit(MeshEventType.NODE_ADDED, {
            "node_id": stored.id,
            "connections": peers,
            "replaced": replaced,
        })
        await self._emit_all(events)
        return stored

    async def remove_node(self, node_id: str) -> MeshNode | None:
        """Remove a node and migrate its tasks. Unknown ids return None (drops)."""
        events: list[tuple[MeshEventType, dict[str, Any]]] = []
        async with self._lock:
            if node_id not in self._topology:
                self._logger.debug("remove_unknown_node", node_id=node_id)
                return None
            evacuated = self._evacuate(node_id)
            removed = self._topology.remove_node(node_id)
            self._flow_history.pop(node_id, None)
            events.append((MeshEventType.NODE_REMOVED, {"node_id": node_id}))
            if evacuated:
                events.append(self._migrate(evacuated, source=node_id))

        await self._emit_all(events)
        return removed

    async def heartbeat(
        self,
        node_id: str,
        load: float | None = None,
        available: ResourceVector | None = None,
    ) -> NodeStatus | None:
        """Record a heartbeat. Unknown ids return None (drops)."""
        async with self._lock:
            node = self._topology.get(node_id)
            previous = node.status if node is not None else None
            status = self._topology.record_heartbeat(
                node_id, self._clock(), load=load, available=available
            )

        if previous == NodeStatus.OFFLINE and status in ONLINE_STATUSES:
            await self._emit(MeshEventType.NODE_RECOVERED, {"node_id": node_id})
        elif previous is not None and status != previous:
            await self._emit(MeshEventType.NODE_STATUS_CHANGED, {
                "node_id": node_id,
                "previous": previous.value,
                "status": status.value if status else None,
            })
        return status

    async def set_node_status(self, node_id: str, status: NodeStatus) -> bool:
        """
        Apply an external status signal (e.g. maintenance). Forcing a node
        offline migrates its tasks. Returns False for unknown ids.
        """
        events: list[tuple[MeshEventType, dict[str, Any]]] = []
        async with self._lock:
            node = self._topology.get(node_id)
            if node is None:
                self._logger.debug("status_unknown_node", node_id=node_id)
                return False
            previous = node.status
            self._topology.set_status(node_id, status)
            if node.status != previous:
                events.append((MeshEventType.NODE_STATUS_CHANGED, {
                    "node_id": node_id,
                    "previous": previous.value,
                    "status": node.status.value,
                }))
            if node.status == NodeStatus.OFFLINE:
                evacuated = self._evacuate(node_id)
                if evacuated:
                    events.append(self._migrate(evacuated, source=node_id))

        await self._emit_all(events)
        return True

    # ─── Placement ───────────────────────────────────────────────────

    async def distribute_tasks(
        self,
        tasks: Iterable[ScheduledTask],
    ) -> dict[str, list[ScheduledTask]]:
        """
        Place tasks on active nodes and reserve their resources.

        Tasks already placed or pending are skipped, as are repeated ids
        within the batch (first occurrence wins). Tasks with no feasible
        node are dropped from the result (not queued).
        """
        async with self._lock:
            fresh: list[ScheduledTask] = []
            seen: set[str] = set()
            for task in tasks:
                if task.id in seen or task.id in self._placements or task.id in self._pending:
                    continue
                seen.add(task.id)
                fresh.append(task)
            distribution = self._place(fresh)

        placed = sum(len(v) for v in distribution.values())
        if placed:
            await self._emit(MeshEventType.TASKS_DISTRIBUTED, {
                "placed": placed,
                "offered": len(fresh),
                "by_node": {nid: [t.id for t in ts] for nid, ts in distribution.items()},
            })
        return distribution

    async def complete_task(self, task_id: str) -> bool:
        """Forget a finished task and release its node resources. False if unknown."""
        async with self._lock:
            if self._pending.pop(task_id, None) is not None:
                return True
            placement = self._placements.pop(task_id, None)
            if placement is None:
                return False
            self._topology.release(placement.node_id, placement.task.resource_requirements)
            return True

    def _place(self, tasks: list[ScheduledTask]) -> dict[str, list[ScheduledTask]]:
        """Distribute, reserve and record. Caller holds the lock."""
        distribution = self._balancer.distribute_load(tasks, self._topology)
        now = self._clock()
        for node_id, node_tasks in distribution.items():
            for task in node_tasks:
                node = self._topology.get(node_id)
                if node is None:
                    continue
                self._record_flow(node, task, now)
                self._topology.reserve(node_id, task.resource_requirements)
                self._placements[task.id] = TaskPlacement(
                    task=task, node_id=node_id, placed_at=now
                )
        return distribution

    def _reapply_reservations(self, node_id: str) -> list[TaskPlacement]:
        """
        Re-reserve ledger entries on a replaced node record, in placement order.
        Entries that no longer fit are pulled off the ledger and returned.
        """
        displaced: list[TaskPlacement] = []
        for placement in [p for p in self._placements.values() if p.node_id == node_id]:
            node = self._topology.get(node_id)
            requirements = placement.task.resource_requirements
            if node is not None and requirements.fits_within(node.available):
                self._topology.reserve(node_id, requirements)
            else:
                del self._placements[placement.task.id]
                displaced.append(placement)
        return displaced

    def _evacuate(self, node_id: str) -> list[TaskPlacement]:
        """Pull every ledger entry off a node and release its reservations."""
        evacuated = [p for p in self._placements.values() if p.node_id == node_id]
        for placement in evacuated:
            del self._placements[placement.task.id]
            self._topology.release(node_id, placement.task.resource_requirements)
        return evacuated

    def _migrate(
        self,
        evacuated: list[TaskPlacement],
        source: str,
    ) -> tuple[MeshEventType, dict[str, Any]]:
        """Re-place evacuated tasks; anything unplaceable goes pending. Caller holds the lock."""
        tasks = [p.task for p in evacuated]
        migrations = {p.task.id: p.migrations + 1 for p in evacuated}
        distribution = self._place(tasks)

        moved: dict[str, str] = {}
        for node_id, node_tasks in distribution.items():
            for task in node_tasks:
                self._placements[task.id].migrations = migrations[task.id]
                moved[task.id] = node_id

        stranded = [t for t in tasks if t.id not in moved]
        for task in stranded:
            self._pending[task.id] = task

        self._total_migrated += len(moved)
        self._logger.info(
            "tasks_migrated",
            source=source,
            migrated=len(moved),
            pending=len(stranded),
        )
        return MeshEventType.TASKS_MIGRATED, {
            "source": source,
            "moved": moved,
            "pending": [t.id for t in stranded],
        }

    def _retry_pending(self) -> dict[str, str]:
        if not self._pending:
            return {}
        queued = list(self._pending.values())
        self._pending.clear()
        distribution = self._place(queued)
        placed = {t.id: nid for nid, ts in distribution.items() for t in ts}
        for task in queued:
            if task.id not in placed:
                self._pending[task.id] = task
        if placed:
            self._logger.info("pending_tasks_placed", placed=len(placed), remaining=len(self._pending))
        return placed

    # ─── Health ──────────────────────────────────────────────────────

    async def check_health(self) -> list[str]:
        """Mark timed-out nodes offline and migrate their tasks. Returns the new offline ids."""
        events: list[tuple[MeshEventType, dict[str, Any]]] = []
        async with self._lock:
            offline = self._topology.check_health(self._clock())
            for node_id in offline:
                events.append((MeshEventType.NODE_OFFLINE, {"node_id": node_id}))
                evacuated = self._evacuate(node_id)
                if evacuated:
                    events.append(self._migrate(evacuated, source=node_id))

        await self._emit_all(events)
        return offline

    # ─── Rebalancing ─────────────────────────────────────────────────

    async def rebalance(self) -> RebalanceResult:
        """Retry pending tasks, then even out load across online nodes."""
        events: list[tuple[MeshEventType, dict[str, Any]]] = []
        async with self._lock:
            placed = self._retry_pending()
            if placed:
                events.append((MeshEventType.TASKS_MIGRATED, {
                    "source": "pending",
                    "moved": placed,
                    "pending": list(self._pending),
                }))
            result = self._balancer.rebalance(self._topology)
            if result.success:
                events.append((MeshEventType.REBALANCED, result.summary()))

        await self._emit_all(events)
        return result

    def set_strategy(self, strategy: str) -> None:
        self._balancer.set_strategy(strategy)

    # ─── Flow Tracking ───────────────────────────────────────────────

    def _record_flow(self, node: MeshNode, task: ScheduledTask, now: float) -> None:
        req = task.resource_requirements
        flow = AttentionFlowMetrics(
            target_node_id=node.id,
            task_id=task.id,
            flow_rate=task.priority
            * _FLOW_PRIORITY_SCALE
            * (1.0 + (req.cpu + req.memory) / _FLOW_COMPLEXITY_SCALE),
            latency=_BASE_LATENCY_MS + _LATENCY_PER_LOAD_POINT * node.current_load,
            bandwidth=req.bandwidth or _DEFAULT_BANDWIDTH,
            efficiency=(1.0 - node.current_load / 100.0)
            * resource_match(node.available, req)
            * capability_match(node, task, default=1.0),
            timestamp=now,
        )
        history = self._flow_history.setdefault(
            node.id, deque(maxlen=self._config.max_history_size)
        )
        history.append(flow)

    # ─── Metrics ─────────────────────────────────────────────────────

    async def collect_metrics(self) -> MeshPerformanceMetrics:
        """Record one MeshPerformanceMetrics sample over the online nodes."""
        async with self._lock:
            metrics = self._compute_metrics()
            self._performance_history.append(metrics)

        await self._emit(MeshEventType.METRICS_COLLECTED, {
            "total_nodes": metrics.total_nodes,
            "active_nodes": metrics.active_nodes,
            "average_load": round(metrics.average_load, 2),
            "throughput": round(metrics.throughput, 2),
        })
        return metrics

    def _compute_metrics(self) -> MeshPerformanceMetrics:
        online = self._topology.online_nodes()
        now = self._clock()

        capacity = ResourceVector()
        used = ResourceVector()
        for node in online:
            capacity = capacity.add(node.max_capacity)
            used = used.add(node.max_capacity.subtract(node.available))

        def pct(dim: str) -> float:
            total = getattr(capacity, dim)
            return getattr(used, dim) / total * 100.0 if total > 0 else 0.0

        recent = [
            flow
            for flows in self._flow_history.values()
            for flow in flows
            if now - flow.timestamp < _LATENCY_WINDOW_S
        ]
        return MeshPerformanceMetrics(
            total_nodes=len(self._topology),
            active_nodes=len(self._topology.active_nodes()),
            average_load=(
                sum(n.current_load for n in online) / len(online) if online else 0.0
            ),
            throughput=sum(100.0 - n.current_load for n in online),
            latency=sum(f.latency for f in recent) / len(recent) if recent else 0.0,
            attention_flow_rates=[
                flows[-1].model_copy() for flows in self._flow_history.values() if flows
            ],
            resource_utilization=ResourceUtilization(
                cpu=pct("cpu"),
                memory=pct("memory"),
                bandwidth=pct("bandwidth"),
                storage=pct("storage"),
            ),
            pending_tasks=len(self._pending),
            timestamp=now,
        )

    # ─── Readers ─────────────────────────────────────────────────────

    async def get_topology(self) -> TopologySnapshot:
        async with self._lock:
            return self._topology.snapshot()

    def get_performance_history(self) -> list[MeshPerformanceMetrics]:
        return [m.model_copy() for m in self._performance_history]

    def get_flow_history(self, node_id: str) -> list[AttentionFlowMetrics]:
        return [f.model_copy() for f in self._flow_history.get(node_id, ())]

    def placements(self) -> dict[str, str]:
        """task_id -> node_id for every placed task."""
        return {tid: p.node_id for tid, p in self._placements.items()}

    def pending_tasks(self) -> list[str]:
        return list(self._pending)

    @property
    def topology(self) -> MeshTopology:
        return self._topology

    @property
    def balancer(self) -> LoadBalancer:
        return self._balancer

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._topology.stats,
            **self._balancer.stats,
            "placed_tasks": len(self._placements),
            "pending_tasks": len(self._pending),
            "total_migrated": self._total_migrated,
            "loops": {loop.name: loop.state.model_dump() for loop in self._loops},
        }

    # ─── Events ──────────────────────────────────────────────────────

    async def _emit(self, event_type: MeshEventType, data: dict[str, Any]) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.emit(MeshEvent(
            event_type=event_type,
            source_system=self.system_id,
            data=data,
        ))

    async def _emit_all(self, events: list[tuple[MeshEventType, dict[str, Any]]]) -> None:
        for event_type, data in events:
            await self._emit(event_type, data)
