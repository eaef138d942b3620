"""Tests for EcanMeshService — wiring, lifecycle and the schedule -> place flow."""

from __future__ import annotations

import asyncio

import pytest

from ecanmesh.config import EcanMeshConfig
from ecanmesh.errors import InvalidConfigError
from ecanmesh.primitives.common import ResourceVector
from ecanmesh.primitives.task import ScheduledTask
from ecanmesh.service import EcanMeshService
from ecanmesh.systems.attention.types import (
    AttentionEdge,
    AttentionEntity,
    AttentionGraph,
    AttentionValue,
)
from ecanmesh.systems.mesh.types import MeshNode

NOW = 1_700_000_000.0


def _make_config(**sections) -> EcanMeshConfig:
    return EcanMeshConfig(instance_id="test", **sections)


def _make_service(graph_provider=None, **sections) -> EcanMeshService:
    return EcanMeshService(_make_config(**sections), graph_provider=graph_provider, clock=lambda: NOW)


def _make_node(node_id: str) -> MeshNode:
    capacity = ResourceVector(cpu=100, memory=100, bandwidth=100, storage=100)
    return MeshNode(
        id=node_id,
        capabilities={"general"},
        max_capacity=capacity,
        available=capacity,
        last_heartbeat=NOW,
    )


def _make_task(task_id: str, cpu: float = 20.0, priority: float = 50.0) -> ScheduledTask:
    return ScheduledTask(
        id=task_id,
        priority=priority,
        estimated_cost=10.0,
        resource_requirements=ResourceVector(cpu=cpu, memory=10),
    )


class TestConstruction:
    def test_attention_loop_needs_graph_provider(self):
        with pytest.raises(InvalidConfigError):
            _make_service(attention={"cycle_interval_s": 1.0})


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop_and_health(self):
        service = _make_service()
        health = await service.health()
        assert health["status"] == "stopped"

        await service.start()
        health = await service.health()
        assert health["status"] == "healthy"
        assert set(health["loops"]) == {"mesh_health", "mesh_metrics", "mesh_rebalance"}
        assert "attention" in health["systems"]

        await service.stop()
        assert not service.running

    @pytest.mark.asyncio
    async def test_attention_loop_runs_cycles(self):
        graph = AttentionGraph.from_entities([AttentionEntity(id="a", attention=1.0, created=NOW)])

        async def _provider() -> AttentionGraph:
            return graph

        service = _make_service(graph_provider=_provider, attention={"cycle_interval_s": 0.01})
        await service.start()
        await asyncio.sleep(0.1)
        await service.stop()

        assert service.allocator.cycle_count > 0
        assert service.allocator.get_attention("a") is not None


class TestFlow:
    @pytest.mark.asyncio
    async def test_schedule_and_distribute(self):
        service = _make_service()
        await service.coordinator.add_node(_make_node("n1"))
        await service.coordinator.add_node(_make_node("n2"))
        tasks = [_make_task(f"t{i}", cpu=40.0) for i in range(4)]
        budget = ResourceVector(cpu=150, memory=100, bandwidth=100, storage=100)

        result, distribution = await service.schedule_and_distribute(tasks, budget)

        assert len(result.accepted) == 3
        placed = {t.id for ts in distribution.values() for t in ts}
        assert placed == {t.id for t in result.accepted}

    @pytest.mark.asyncio
    async def test_complete_task_releases_everywhere(self):
        service = _make_service()
        await service.coordinator.add_node(_make_node("n1"))
        await service.schedule_and_distribute([_make_task("t1")], ResourceVector(cpu=100, memory=100))

        assert await service.complete_task("t1") is True
        assert service.scheduler.get_allocation("t1") is None
        assert service.coordinator.placements() == {}

    @pytest.mark.asyncio
    async def test_forgotten_entity_releases_allocation(self):
        service = _make_service()
        await service.schedule([_make_task("e1")], ResourceVector(cpu=100, memory=100))
        assert service.scheduler.get_allocation("e1") is not None

        service.allocator.set_attention("e1", AttentionValue(sti=-5000))
        report = await service.run_cycle(AttentionGraph())

        assert report.forgotten == ["e1"]
        assert service.scheduler.get_allocation("e1") is None


def _make_graph() -> AttentionGraph:
    entities = [
        AttentionEntity(id="a", attention=1.0, activation=0.8, activation_count=5, created=NOW - 3_600),
        AttentionEntity(id="b", attention=0.5, activation=0.2, created=NOW),
        AttentionEntity(id="c", attention=0.1, created=NOW),
    ]
    edges = [
        AttentionEdge(source="a", target="b", weight=0.5),
        AttentionEdge(source="b", target="c", weight=0.3),
    ]
    return AttentionGraph.from_entities(entities, edges)


class TestSerialization:
    @pytest.mark.asyncio
    async def test_concurrent_cycles_match_sequential(self):
        graph = _make_graph()
        concurrent = _make_service()
        sequential = _make_service()

        reports = await asyncio.gather(concurrent.run_cycle(graph), concurrent.run_cycle(graph))
        await sequential.run_cycle(graph)
        await sequential.run_cycle(graph)

        assert sorted(r.cycle_number for r in reports) == [1, 2]
        left = await concurrent.allocator.snapshot()
        right = await sequential.allocator.snapshot()
        assert left.total_currency == right.total_currency
        assert left.bank == right.bank
        assert left.values == right.values

    @pytest.mark.asyncio
    async def test_held_lock_blocks_cycle_and_membership(self):
        service = _make_service()

        async with service.allocator.lock:
            cycle = asyncio.create_task(service.run_cycle(_make_graph()))
            join = asyncio.create_task(service.coordinator.add_node(_make_node("n1")))
            await asyncio.sleep(0.02)
            assert not cycle.done()
            assert not join.done()
            assert "n1" not in service.coordinator.topology

        report = await cycle
        await join
        assert report.cycle_number == 1
        assert "n1" in service.coordinator.topology

    @pytest.mark.asyncio
    async def test_membership_and_distribution_do_not_interleave(self):
        service = _make_service()
        await service.coordinator.add_node(_make_node("n1"))
        tasks = [_make_task(f"t{i}", cpu=40.0) for i in range(4)]

        await asyncio.gather(
            service.coordinator.add_node(_make_node("n2")),
            service.coordinator.distribute_tasks(tasks),
            service.run_cycle(_make_graph()),
        )

        placements = service.coordinator.placements()
        for node_id in ("n1", "n2"):
            node = service.coordinator.topology.get(node_id)
            placed_cpu = sum(
                t.resource_requirements.cpu for t in tasks if placements.get(t.id) == node_id
            )
            assert node.available.cpu == node.max_capacity.cpu - placed_cpu
            assert node.available.cpu >= 0
