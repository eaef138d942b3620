"""
ecanmesh — Error Hierarchy

Only configuration problems are exceptions. Everything else the core can
run into is represented as data:

  resource infeasible  -> task omitted from SchedulingResult / distribution
  unknown node id      -> no-op (remove_node returns None, heartbeat ignored)
  unreachable route    -> pair absent from the routing table, route() -> None
  background failure   -> logged and counted, the loop keeps running
"""

from __future__ import annotations


class EcanMeshError(RuntimeError):
    """Base for all ecanmesh runtime errors."""


class InvalidConfigError(ValueError):
    """
    Configuration bounds are malformed (e.g. min_sti > max_sti, a rate
    outside [0, 1], a non-positive loop interval).

    Raised by load_config() and at service construction. Direct pydantic
    construction of a bad sub-config raises pydantic.ValidationError,
    which is also a ValueError.
    """


class LoopAlreadyRunningError(EcanMeshError):
    """A periodic loop was started twice."""
