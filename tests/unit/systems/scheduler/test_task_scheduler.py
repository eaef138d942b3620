"""Tests for TaskScheduler — greedy, priority-ordered admission."""

from __future__ import annotations

from ecanmesh.config import AttentionConfig, SchedulerConfig
from ecanmesh.primitives.common import ResourceVector
from ecanmesh.primitives.task import ScheduledTask
from ecanmesh.systems.attention.store import AttentionStore
from ecanmesh.systems.scheduler.scheduler import TaskScheduler


def _make_scheduler(initial_bank: int = 1_000_000, **overrides) -> TaskScheduler:
    store = AttentionStore(AttentionConfig(initial_bank=initial_bank))
    return TaskScheduler(SchedulerConfig(**overrides), store)


def _make_task(task_id: str, **overrides) -> ScheduledTask:
    defaults = {
        "id": task_id,
        "priority": 50.0,
        "estimated_cost": 10.0,
        "resource_requirements": ResourceVector(cpu=10, memory=10),
    }
    defaults.update(overrides)
    return ScheduledTask(**defaults)


def _budget(**dims) -> ResourceVector:
    defaults = {"cpu": 100, "memory": 100, "bandwidth": 100, "storage": 100}
    defaults.update(dims)
    return ResourceVector(**defaults)


class TestAttentionCost:
    def test_cost_formula(self):
        scheduler = _make_scheduler()
        task = _make_task(
            "t1",
            estimated_cost=100.0,
            priority=50.0,
            resource_requirements=ResourceVector(cpu=500, memory=500),
        )
        # 100 * 0.5 * (1 + 1000/1000)
        assert scheduler.attention_cost(task) == 100

    def test_cost_floors(self):
        scheduler = _make_scheduler()
        task = _make_task(
            "t1",
            estimated_cost=3.0,
            priority=50.0,
            resource_requirements=ResourceVector(),
        )
        assert scheduler.attention_cost(task) == 1


class TestFeasibility:
    def test_never_exceeds_budget(self):
        scheduler = _make_scheduler()
        tasks = [
            _make_task(f"t{i}", priority=float(i), resource_requirements=ResourceVector(cpu=30))
            for i in range(6)
        ]
        budget = _budget()

        result = scheduler.schedule(tasks, budget)

        used = sum(t.resource_requirements.cpu for t in result.accepted)
        assert used <= budget.cpu
        assert len(result.accepted) == 3
        assert len(result.rejected) == 3

    def test_highest_priority_admitted_first(self):
        scheduler = _make_scheduler()
        tasks = [
            _make_task("low", priority=1.0, resource_requirements=ResourceVector(cpu=60)),
            _make_task("high", priority=90.0, resource_requirements=ResourceVector(cpu=60)),
        ]

        result = scheduler.schedule(tasks, _budget())

        assert [t.id for t in result.accepted] == ["high"]
        assert result.rejected == ["low"]

    def test_ties_keep_input_order(self):
        scheduler = _make_scheduler()
        tasks = [_make_task(f"t{i}", priority=10.0) for i in range(4)]

        result = scheduler.schedule(tasks, _budget())

        assert [t.id for t in result.accepted] == ["t0", "t1", "t2", "t3"]

    def test_smaller_task_fills_remaining_budget(self):
        scheduler = _make_scheduler()
        tasks = [
            _make_task("big", priority=90.0, resource_requirements=ResourceVector(cpu=80)),
            _make_task("bigger", priority=80.0, resource_requirements=ResourceVector(cpu=50)),
            _make_task("small", priority=10.0, resource_requirements=ResourceVector(cpu=20)),
        ]

        result = scheduler.schedule(tasks, _budget())

        assert [t.id for t in result.accepted] == ["big", "small"]

    def test_every_dimension_checked(self):
        scheduler = _make_scheduler()
        task = _make_task("t1", resource_requirements=ResourceVector(storage=101))
        result = scheduler.schedule([task], _budget())
        assert result.accepted == []


class TestAttentionCap:
    def test_attention_cap_rejects(self):
        # cap = 0.8 * 1000 = 800
        scheduler = _make_scheduler(initial_bank=1000)
        tasks = [
            _make_task(
                f"t{i}",
                estimated_cost=500.0,
                priority=100.0,
                resource_requirements=ResourceVector(),
            )
            for i in range(2)
        ]

        result = scheduler.schedule(tasks, _budget())

        assert [t.id for t in result.accepted] == ["t0"]
        assert result.attention_spent == 500
        assert result.attention_spent <= 0.8 * 1000

    def test_custom_budget_fraction(self):
        scheduler = _make_scheduler(initial_bank=1000, attention_budget_fraction=0.4)
        task = _make_task(
            "t1", estimated_cost=500.0, priority=100.0, resource_requirements=ResourceVector()
        )
        assert scheduler.schedule([task], _budget()).accepted == []

    def test_scheduling_does_not_debit_bank(self):
        scheduler = _make_scheduler(initial_bank=1000)
        scheduler.schedule([_make_task("t1")], _budget())
        assert scheduler.stats["attention_budget"] == 800.0


class TestUtilizationAndAllocations:
    def test_utilization_percentage(self):
        scheduler = _make_scheduler()
        task = _make_task("t1", resource_requirements=ResourceVector(cpu=50, memory=50))

        result = scheduler.schedule([task], _budget())

        # 100 of 400 summed budget
        assert result.utilization == 25.0
        assert result.total_cost == 10.0

    def test_zero_budget_utilization(self):
        scheduler = _make_scheduler()
        result = scheduler.schedule([], ResourceVector())
        assert result.utilization == 0.0

    def test_allocation_recorded_and_released(self):
        scheduler = _make_scheduler()
        task = _make_task("t1", priority=70.0, resource_requirements=ResourceVector(cpu=5, memory=7))
        scheduler.schedule([task], _budget())

        allocation = scheduler.get_allocation("t1")
        assert allocation is not None
        assert allocation.allocated_cpu == 5
        assert allocation.allocated_memory == 7
        assert allocation.priority == 70.0

        assert scheduler.release(["t1", "unknown"]) == 1
        assert scheduler.get_allocation("t1") is None

    def test_rejected_tasks_have_no_allocation(self):
        scheduler = _make_scheduler()
        task = _make_task("t1", resource_requirements=ResourceVector(cpu=1000))
        scheduler.schedule([task], _budget())
        assert scheduler.get_allocation("t1") is None
