"""
ecanmesh — Task Scheduler

Priority-ordered, resource- and attention-bounded task admission.
"""

from ecanmesh.systems.scheduler.scheduler import TaskScheduler
from ecanmesh.systems.scheduler.types import SchedulingResult

__all__ = ["SchedulingResult", "TaskScheduler"]
