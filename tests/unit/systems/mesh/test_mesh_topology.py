"""Tests for MeshTopology — connections, routing and node health."""

from __future__ import annotations

import pydantic
import pytest

from ecanmesh.config import MeshConfig
from ecanmesh.primitives.common import ResourceVector
from ecanmesh.systems.mesh.topology import (
    MeshTopology,
    capability_overlap,
    resource_complementarity,
)
from ecanmesh.systems.mesh.types import MeshNode, NodeStatus


def _resources(value: float = 100.0) -> ResourceVector:
    return ResourceVector(cpu=value, memory=value, bandwidth=value, storage=value)


def _make_node(node_id: str, **overrides) -> MeshNode:
    defaults = {
        "id": node_id,
        "endpoint": f"mem://{node_id}",
        "capabilities": {"general"},
        "current_load": 0.0,
        "max_capacity": _resources(),
        "available": _resources(),
        "last_heartbeat": 0.0,
    }
    defaults.update(overrides)
    return MeshNode(**defaults)


def _make_chain() -> MeshTopology:
    """a - b - c, with a and c incompatible."""
    topology = MeshTopology(MeshConfig())
    topology.add_node(_make_node("a", capabilities={"x"}, current_load=0.0))
    topology.add_node(_make_node("b", capabilities={"x"}, current_load=50.0))
    topology.add_node(_make_node("c", capabilities=set(), current_load=100.0))
    return topology


class TestScoring:
    def test_capability_overlap(self):
        assert capability_overlap({"a", "b"}, {"b", "c", "d"}) == pytest.approx(1 / 3)
        assert capability_overlap(set(), set()) == 0.0

    def test_resource_complementarity(self):
        assert resource_complementarity(_resources(100), _resources(50)) == pytest.approx(0.5)
        assert resource_complementarity(_resources(100), ResourceVector()) == 0.0

    def test_compatibility_floor(self):
        topology = MeshTopology(MeshConfig())
        a = _make_node("a", capabilities=set(), current_load=0.0, available=ResourceVector(),
                       max_capacity=ResourceVector())
        b = _make_node("b", capabilities=set(), current_load=100.0)
        assert topology.compatibility(a, b) == pytest.approx(0.3)

    def test_identical_nodes_fully_compatible(self):
        topology = MeshTopology(MeshConfig())
        assert topology.compatibility(_make_node("a"), _make_node("b")) == pytest.approx(1.0)


class TestMembership:
    def test_compatible_nodes_connect_symmetrically(self):
        topology = MeshTopology(MeshConfig())
        topology.add_node(_make_node("a"))
        topology.add_node(_make_node("b"))

        assert topology.neighbors("a") == {"b"}
        assert topology.neighbors("b") == {"a"}

    def test_incompatible_nodes_not_connected(self):
        topology = _make_chain()
        assert not topology.is_connected("a", "c")
        assert not topology.is_connected("c", "a")

    def test_add_stores_copy(self):
        topology = MeshTopology(MeshConfig())
        node = _make_node("a")
        topology.add_node(node)
        node.current_load = 99.0
        assert topology.get("a").current_load == 0.0

    def test_duplicate_id_replaces(self):
        topology = MeshTopology(MeshConfig())
        topology.add_node(_make_node("a"))
        topology.add_node(_make_node("a", endpoint="mem://new"))
        assert len(topology) == 1
        assert topology.get("a").endpoint == "mem://new"

    def test_remove_unknown_is_noop(self):
        topology = _make_chain()
        assert topology.remove_node("ghost") is None
        assert len(topology) == 3

    def test_remove_cleans_references(self):
        topology = _make_chain()
        removed = topology.remove_node("b")

        assert removed is not None and removed.id == "b"
        assert "b" not in topology
        assert topology.neighbors("a") == set()
        assert topology.route("a", "c") is None
        snapshot = topology.snapshot()
        assert all("b" not in peers for peers in snapshot.connections.values())

    def test_available_above_capacity_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            _make_node("a", max_capacity=_resources(10), available=_resources(20))

    def test_snapshot_is_isolated_copy(self):
        topology = _make_chain()
        snapshot = topology.snapshot()

        snapshot.nodes["a"].current_load = 99.0
        snapshot.routing_table["a"]["c"] = "a"
        with pytest.raises(pydantic.ValidationError):
            snapshot.taken_at = 0.0

        assert topology.get("a").current_load == 0.0
        assert topology.next_hop("a", "c") == "b"


class TestRouting:
    def test_multi_hop_route(self):
        topology = _make_chain()
        assert topology.route("a", "c") == ["a", "b", "c"]
        assert topology.next_hop("a", "c") == "b"
        assert topology.next_hop("c", "a") == "b"

    def test_route_to_self(self):
        topology = _make_chain()
        assert topology.route("a", "a") == ["a"]

    def test_unreachable_pairs_absent(self):
        topology = _make_chain()
        isolated = _make_node(
            "d",
            capabilities=set(),
            current_load=100.0,
            max_capacity=ResourceVector(),
            available=ResourceVector(),
        )
        topology.add_node(isolated)

        snapshot = topology.snapshot()
        assert "d" not in snapshot.routing_table["a"]
        assert snapshot.routing_table["d"] == {}
        assert topology.route("a", "d") is None

    def test_routing_rebuilt_on_membership_change(self):
        topology = _make_chain()
        rebuilds = topology.stats["routing_rebuilds"]
        topology.remove_node("c")
        assert topology.stats["routing_rebuilds"] == rebuilds + 1


class TestHealth:
    def test_timeout_marks_offline(self):
        topology = _make_chain()
        # heartbeat_interval 5s * 3
        went_offline = topology.check_health(now=16.0)

        assert sorted(went_offline) == ["a", "b", "c"]
        assert topology.get("a").status == NodeStatus.OFFLINE
        # connections retained
        assert topology.is_connected("a", "b")

    def test_within_timeout_stays_online(self):
        topology = _make_chain()
        assert topology.check_health(now=15.0) == []

    def test_offline_not_reported_twice(self):
        topology = _make_chain()
        topology.check_health(now=16.0)
        assert topology.check_health(now=30.0) == []

    def test_heartbeat_revives(self):
        topology = _make_chain()
        topology.check_health(now=16.0)

        status = topology.record_heartbeat("a", now=17.0, load=10.0)

        assert status == NodeStatus.ACTIVE
        assert topology.get("a").last_heartbeat == 17.0

    def test_heartbeat_load_drives_busy(self):
        topology = MeshTopology(MeshConfig())
        topology.add_node(_make_node("a"))
        assert topology.record_heartbeat("a", now=1.0, load=90.0) == NodeStatus.BUSY
        assert topology.record_heartbeat("a", now=2.0, load=20.0) == NodeStatus.ACTIVE

    def test_heartbeat_unknown_node(self):
        topology = MeshTopology(MeshConfig())
        assert topology.record_heartbeat("ghost", now=1.0) is None

    def test_maintenance_only_by_signal(self):
        topology = MeshTopology(MeshConfig())
        topology.add_node(_make_node("a"))
        topology.set_status("a", NodeStatus.MAINTENANCE)

        assert topology.check_health(now=1_000.0) == []
        topology.record_heartbeat("a", now=1_001.0, load=10.0)
        assert topology.get("a").status == NodeStatus.MAINTENANCE

        topology.set_status("a", NodeStatus.ACTIVE)
        assert topology.get("a").status == NodeStatus.ACTIVE

    def test_active_nodes_excludes_others(self):
        topology = _make_chain()
        # c joined with load 100 and is busy
        assert [n.id for n in topology.active_nodes()] == ["a", "b"]
        assert len(topology.online_nodes()) == 3


class TestReservations:
    def test_reserve_and_release(self):
        topology = MeshTopology(MeshConfig())
        topology.add_node(_make_node("a"))

        topology.reserve("a", ResourceVector(cpu=40))
        assert topology.get("a").available.cpu == 60

        topology.release("a", ResourceVector(cpu=80))
        assert topology.get("a").available.cpu == 100
