"""
ecanmesh — Service

Wires the attention bank, the task scheduler and the mesh coordinator
around one shared asyncio.Lock and one EventBus, and owns their
lifecycle.

Control flow:
  attention loop   allocator.run_cycle(graph) on cycle_interval_s (optional)
  schedule()       scheduler admits tasks against the current bank
  distribute()     coordinator places admitted tasks on active nodes
  mesh loops       health / metrics / rebalance (see MeshCoordinator)

Forgotten entities release any scheduler allocation recorded under the
same id, via the ENTITIES_FORGOTTEN event.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog

from ecanmesh.config import EcanMeshConfig
from ecanmesh.core.event_bus import EventBus
from ecanmesh.core.periodic import PeriodicTask
from ecanmesh.core.types import MeshEvent, MeshEventType
from ecanmesh.errors import InvalidConfigError
from ecanmesh.primitives.common import ResourceVector, epoch_now
from ecanmesh.primitives.task import ScheduledTask
from ecanmesh.systems.attention.allocator import AttentionAllocator
from ecanmesh.systems.attention.store import AttentionStore
from ecanmesh.systems.attention.types import AttentionGraph, CycleReport
from ecanmesh.systems.mesh.coordinator import MeshCoordinator
from ecanmesh.systems.scheduler.scheduler import TaskScheduler
from ecanmesh.systems.scheduler.types import SchedulingResult

logger = structlog.get_logger("ecanmesh.service")

# Supplies the attention graph for each periodic cycle. May be sync or async.
GraphProvider = Callable[[], AttentionGraph | Awaitable[AttentionGraph]]


class EcanMeshService:
    """
    Top-level owner of every ecanmesh system.

    Construct, optionally add nodes, then ``await start()``. ``await stop()``
    stops every loop and waits for in-progress ticks and cycles.
    """

    def __init__(
        self,
        config: EcanMeshConfig,
        graph_provider: GraphProvider | None = None,
        clock: Callable[[], float] = epoch_now,
        rng: random.Random | None = None,
    ) -> None:
        if config.attention.cycle_interval_s > 0 and graph_provider is None:
            raise InvalidConfigError(
                "attention.cycle_interval_s is set but no graph_provider was given"
            )

        self._config = config
        self._graph_provider = graph_provider
        self._logger = logger.bind(component="ecanmesh_service")

        self._lock = asyncio.Lock()
        self._event_bus = EventBus()
        self._store = AttentionStore(config.attention)
        self._allocator = AttentionAllocator(
            config.attention,
            store=self._store,
            lock=self._lock,
            event_bus=self._event_bus,
            clock=clock,
        )
        self._scheduler = TaskScheduler(config.scheduler, self._store)
        self._coordinator = MeshCoordinator(
            config.mesh,
            lock=self._lock,
            event_bus=self._event_bus,
            clock=clock,
            rng=rng,
        )

        self._attention_loop: PeriodicTask | None = None
        if config.attention.cycle_interval_s > 0:
            self._attention_loop = PeriodicTask(
                "attention_cycle",
                config.attention.cycle_interval_s,
                self._attention_tick,
                grace_s=config.mesh.shutdown_grace_s,
            )

        self._event_bus.subscribe(
            MeshEventType.ENTITIES_FORGOTTEN, self._on_entities_forgotten
        )
        self._started: bool = False

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._coordinator.start()
        if self._attention_loop is not None:
            self._attention_loop.start()
        self._started = True
        self._logger.info(
            "ecanmesh_started",
            instance_id=self._config.instance_id,
            strategy=self._config.mesh.strategy,
            attention_loop=self._attention_loop is not None,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        if self._attention_loop is not None:
            await self._attention_loop.stop()
        await self._coordinator.stop()
        self._started = False
        self._logger.info("ecanmesh_stopped", instance_id=self._config.instance_id)

    async def _attention_tick(self) -> None:
        if self._graph_provider is None:
            return
        graph = self._graph_provider()
        if inspect.isawaitable(graph):
            graph = await graph
        await self._allocator.run_cycle(graph)

    async def _on_entities_forgotten(self, event: MeshEvent) -> None:
        entity_ids = event.data.get("entity_ids", [])
        released = self._scheduler.release(entity_ids)
        if released:
            self._logger.debug("allocations_released_on_forget", released=released)

    # ─── Operations ──────────────────────────────────────────────────

    async def run_cycle(self, graph: AttentionGraph) -> CycleReport:
        return await self._allocator.run_cycle(graph)

    async def schedule(
        self,
        tasks: Iterable[ScheduledTask],
        budget: ResourceVector,
    ) -> SchedulingResult:
        """Admit tasks against the bank as it stands, never mid-cycle."""
        async with self._lock:
            return self._scheduler.schedule(tasks, budget)

    async def schedule_and_distribute(
        self,
        tasks: Iterable[ScheduledTask],
        budget: ResourceVector,
    ) -> tuple[SchedulingResult, dict[str, list[ScheduledTask]]]:
        """Schedule, then place the accepted tasks on the mesh."""
        result = await self.schedule(tasks, budget)
        distribution = await self._coordinator.distribute_tasks(result.accepted)
        return result, distribution

    async def complete_task(self, task_id: str) -> bool:
        placed = await self._coordinator.complete_task(task_id)
        released = self._scheduler.release([task_id]) > 0
        return placed or released

    # ─── Accessors ───────────────────────────────────────────────────

    @property
    def config(self) -> EcanMeshConfig:
        return self._config

    @property
    def allocator(self) -> AttentionAllocator:
        return self._allocator

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    @property
    def coordinator(self) -> MeshCoordinator:
        return self._coordinator

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def running(self) -> bool:
        return self._started

    async def health(self) -> dict[str, Any]:
        """Service health: loop error counts and per-system stats."""
        loops = list(self._coordinator.loops)
        if self._attention_loop is not None:
            loops.append(self._attention_loop.state)

        status = "healthy" if self._started else "stopped"
        if self._started and any(not loop.running for loop in loops):
            status = "degraded"

        return {
            "status": status,
            "instance_id": self._config.instance_id,
            "loops": {loop.name: loop.model_dump() for loop in loops},
            "systems": {
                "attention": self._allocator.stats,
                "scheduler": self._scheduler.stats,
                "mesh": self._coordinator.stats,
                "event_bus": self._event_bus.stats,
            },
        }
