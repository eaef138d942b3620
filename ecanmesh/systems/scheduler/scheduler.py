"""
ecanmesh — Task Scheduler

Turns task priorities into a feasible subset under a resource budget
and an attention-spend cap.

Greedy admission in descending priority (stable, so ties keep input
order). A task is admitted iff:
  (a) its requirements fit the remaining budget on every dimension, and
  (b) attention_spent + cost(task) <= attention_budget_fraction * bank
where cost(task) = floor(estimated_cost * priority/100 * (1 + total(req)/1000)).

Tasks failing either check are dropped from the result. That is the
contract, not an error. The scheduler reads the bank but never debits
it: attention cost is a ceiling on concurrent commitment, not a payment.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog

from ecanmesh.primitives.common import ResourceVector
from ecanmesh.primitives.task import ResourceAllocation, ScheduledTask
from ecanmesh.systems.scheduler.types import SchedulingResult

if TYPE_CHECKING:
    from ecanmesh.config import SchedulerConfig
    from ecanmesh.systems.attention.store import AttentionStore

logger = structlog.get_logger("ecanmesh.systems.scheduler")


class TaskScheduler:
    system_id: str = "scheduler"

    def __init__(self, config: SchedulerConfig, store: AttentionStore) -> None:
        self._config = config
        self._store = store
        self._logger = logger.bind(component="task_scheduler")
        self._allocations: dict[str, ResourceAllocation] = {}

        self._total_scheduled: int = 0
        self._total_rejected: int = 0

    # ─── Cost Model ──────────────────────────────────────────────────

    def attention_cost(self, task: ScheduledTask) -> int:
        """Attention a task commits: cost * priority weight * complexity."""
        priority_multiplier = task.priority / self._config.priority_scale
        complexity = 1.0 + task.resource_requirements.total() / self._config.complexity_scale
        return math.floor(task.estimated_cost * priority_multiplier * complexity)

    def attention_budget(self) -> float:
        return self._store.bank * self._config.attention_budget_fraction

    # ─── Scheduling ──────────────────────────────────────────────────

    def schedule(
        self,
        tasks: Iterable[ScheduledTask],
        budget: ResourceVector,
    ) -> SchedulingResult:
        """
        Admit the highest-priority feasible subset of tasks.

        Drops (never raises) tasks that do not fit the remaining resource
        budget or would exceed the attention cap.
        """
        ordered = sorted(tasks, key=lambda t: -t.priority)
        remaining = budget.model_copy()
        attention_cap = self.attention_budget()

        result = SchedulingResult()
        for task in ordered:
            req = task.resource_requirements
            if not req.fits_within(remaining):
                result.rejected.append(task.id)
                continue

            cost = self.attention_cost(task)
            if result.attention_spent + cost > attention_cap:
                result.rejected.append(task.id)
                continue

            result.accepted.append(task)
            result.total_cost += task.estimated_cost
            result.attention_spent += cost
            remaining = remaining.subtract(req)

            self._allocations[task.id] = ResourceAllocation(
                task_id=task.id,
                node_id=task.node_id,
                allocated_cpu=req.cpu,
                allocated_memory=req.memory,
                priority=task.priority,
            )

        result.utilization = self._utilization(budget, remaining)
        self._total_scheduled += len(result.accepted)
        self._total_rejected += len(result.rejected)

        self._logger.debug(
            "tasks_scheduled",
            offered=len(ordered),
            accepted=len(result.accepted),
            rejected=len(result.rejected),
            attention_spent=result.attention_spent,
            attention_cap=round(attention_cap, 2),
            utilization=round(result.utilization, 2),
        )
        return result

    @staticmethod
    def _utilization(total: ResourceVector, remaining: ResourceVector) -> float:
        capacity = total.total()
        if capacity == 0:
            return 0.0
        return (capacity - remaining.total()) / capacity * 100.0

    # ─── Allocation Records ──────────────────────────────────────────

    def get_allocation(self, task_id: str) -> ResourceAllocation | None:
        return self._allocations.get(task_id)

    def release(self, task_ids: Iterable[str]) -> int:
        """Drop allocation records (completed tasks, forgotten entities). Returns count dropped."""
        dropped = 0
        for task_id in task_ids:
            if self._allocations.pop(task_id, None) is not None:
                dropped += 1
        return dropped

    @property
    def allocations(self) -> dict[str, ResourceAllocation]:
        return {tid: a.model_copy() for tid, a in self._allocations.items()}

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "allocations": len(self._allocations),
            "total_scheduled": self._total_scheduled,
            "total_rejected": self._total_rejected,
            "attention_budget": round(self.attention_budget(), 2),
        }
