"""
ecanmesh — Mesh Topology

Node registry, compatibility-driven connection graph and the all-pairs
routing table.

Connections are undirected and formed once, when a node joins: the new
node is linked to every existing node whose compatibility score exceeds
``connection_threshold``. The routing table is rebuilt from scratch
(Floyd-Warshall over unit-weight edges) after every membership change
and holds entries only for reachable pairs.

Node status machine:
  active <-> busy         load-derived (load >= busy_load_threshold)
  active|busy -> offline  heartbeat timeout (connections retained)
  offline -> active|busy  heartbeat resumes
  * <-> maintenance       external signal only

This class is not thread-safe and holds no lock. The MeshCoordinator
serializes every call under the shared state lock.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

import structlog

from ecanmesh.primitives.common import RESOURCE_DIMENSIONS, ResourceVector, clamp
from ecanmesh.systems.mesh.types import (
    ONLINE_STATUSES,
    MeshNode,
    NodeStatus,
    TopologySnapshot,
)

if TYPE_CHECKING:
    from ecanmesh.config import MeshConfig

logger = structlog.get_logger("ecanmesh.systems.mesh.topology")


# ─── Compatibility Scoring ───────────────────────────────────────


def capability_overlap(a: set[str], b: set[str]) -> float:
    """Shared capabilities over the larger capability set. 0 when both are empty."""
    largest = max(len(a), len(b))
    if largest == 0:
        return 0.0
    return len(a & b) / largest


def resource_complementarity(a: ResourceVector, b: ResourceVector) -> float:
    """
    Mean per-dimension min/max ratio of two resource vectors.

    A dimension where both sides offer nothing counts as a perfect match.
    Returns 0 if either vector is entirely empty.
    """
    if a.total() == 0 or b.total() == 0:
        return 0.0
    ratios: list[float] = []
    for dim in RESOURCE_DIMENSIONS:
        x, y = getattr(a, dim), getattr(b, dim)
        hi = max(x, y)
        ratios.append(1.0 if hi == 0 else min(x, y) / hi)
    return sum(ratios) / len(ratios)


class MeshTopology:
    """
    The mesh graph. Stores copies of the node records it is given so
    callers cannot mutate registry state behind its back.
    """

    def __init__(self, config: MeshConfig) -> None:
        self._config = config
        self._logger = logger.bind(component="mesh_topology")

        self._nodes: dict[str, MeshNode] = {}
        self._connections: dict[str, set[str]] = {}
        self._routing: dict[str, dict[str, str]] = {}
        self._routing_rebuilds: int = 0

    # ─── Membership ──────────────────────────────────────────────────

    def compatibility(self, a: MeshNode, b: MeshNode) -> float:
        score = (
            0.4 * capability_overlap(a.capabilities, b.capabilities)
            + 0.3 * (1.0 - abs(a.current_load - b.current_load) / 100.0)
            + 0.3 * resource_complementarity(a.available, b.available)
        )
        return max(self._config.min_compatibility, score)

    def add_node(self, node: MeshNode) -> MeshNode:
        """
        Insert a copy of ``node`` and connect it to every compatible peer.

        A duplicate id replaces the old record and its connections.
        """
        if node.id in self._nodes:
            self._disconnect(node.id)
            self._logger.info("node_replaced", node_id=node.id)

        stored = node.model_copy(deep=True)
        self._apply_load_status(stored)
        self._nodes[stored.id] = stored
        self._connections[stored.id] = set()

        for other_id, other in self._nodes.items():
            if other_id == stored.id:
                continue
            if self.compatibility(stored, other) > self._config.connection_threshold:
                self._connections[stored.id].add(other_id)
                self._connections[other_id].add(stored.id)

        self._recompute_routes()
        self._logger.info(
            "node_added",
            node_id=stored.id,
            connections=len(self._connections[stored.id]),
            total_nodes=len(self._nodes),
        )
        return stored.model_copy(deep=True)

    def remove_node(self, node_id: str) -> MeshNode | None:
        """Remove a node and every reference to it. Unknown ids are a no-op (drops)."""
        node = self._nodes.pop(node_id, None)
        if node is None:
            self._logger.debug("remove_unknown_node", node_id=node_id)
            return None

        self._disconnect(node_id)
        self._recompute_routes()
        self._logger.info("node_removed", node_id=node_id, total_nodes=len(self._nodes))
        return node

    def _disconnect(self, node_id: str) -> None:
        self._connections.pop(node_id, None)
        for peers in self._connections.values():
            peers.discard(node_id)

    # ─── Routing ─────────────────────────────────────────────────────

    def _recompute_routes(self) -> None:
        """Floyd-Warshall over unit-weight connections. Unreachable pairs are omitted."""
        # TODO: patch the table incrementally on add_node instead of a full O(n^3) rebuild
        ids = list(self._nodes)
        dist: dict[str, dict[str, float]] = {}
        next_hop: dict[str, dict[str, str]] = {}

        for i in ids:
            dist[i] = {}
            next_hop[i] = {}
            peers = self._connections.get(i, set())
            for j in ids:
                if i == j:
                    dist[i][j] = 0.0
                elif j in peers:
                    dist[i][j] = 1.0
                    next_hop[i][j] = j
                else:
                    dist[i][j] = math.inf

        for k in ids:
            dist_k = dist[k]
            for i in ids:
                dist_ik = dist[i][k]
                if dist_ik == math.inf:
                    continue
                dist_i = dist[i]
                for j in ids:
                    candidate = dist_ik + dist_k[j]
                    if candidate < dist_i[j]:
                        dist_i[j] = candidate
                        next_hop[i][j] = next_hop[i][k]

        self._routing = next_hop
        self._routing_rebuilds += 1

    def next_hop(self, source: str, destination: str) -> str | None:
        return self._routing.get(source, {}).get(destination)

    def route(self, source: str, destination: str) -> list[str] | None:
        """Full hop path from source to destination, inclusive. None if unreachable."""
        if source not in self._nodes or destination not in self._nodes:
            return None
        if source == destination:
            return [source]

        path = [source]
        current = source
        while current != destination:
            hop = self.next_hop(current, destination)
            if hop is None or len(path) > len(self._nodes):
                return None
            path.append(hop)
            current = hop
        return path

    # ─── Health & Status ─────────────────────────────────────────────

    def check_health(self, now: float) -> list[str]:
        """
        Mark nodes offline whose last heartbeat is older than the timeout.

        Returns the ids that transitioned on this call. Nodes already
        offline or in maintenance are left alone.
        """
        timeout = self._config.heartbeat_timeout_s
        went_offline: list[str] = []
        for node in self._nodes.values():
            if node.status not in ONLINE_STATUSES:
                continue
            if now - node.last_heartbeat > timeout:
                node.status = NodeStatus.OFFLINE
                went_offline.append(node.id)

        if went_offline:
            self._logger.warning("nodes_offline", node_ids=went_offline, timeout_s=timeout)
        return went_offline

    def record_heartbeat(
        self,
        node_id: str,
        now: float,
        load: float | None = None,
        available: ResourceVector | None = None,
    ) -> NodeStatus | None:
        """
        Refresh a node's heartbeat and optionally its reported load and
        available resources. Revives offline nodes.

        Returns the node's status after the update, or None for an unknown
        id (drops).
        """
        node = self._nodes.get(node_id)
        if node is None:
            self._logger.debug("heartbeat_unknown_node", node_id=node_id)
            return None

        node.last_heartbeat = now
        if load is not None:
            node.current_load = clamp(load, 0.0, 100.0)
        if available is not None:
            node.available = self._cap_available(node, available)

        if node.status == NodeStatus.OFFLINE:
            node.status = NodeStatus.ACTIVE
            self._logger.info("node_recovered", node_id=node_id)
        self._apply_load_status(node)
        return node.status

    def set_status(self, node_id: str, status: NodeStatus) -> bool:
        """Apply an externally signalled status (e.g. maintenance). False for unknown ids."""
        node = self._nodes.get(node_id)
        if node is None:
            self._logger.debug("status_unknown_node", node_id=node_id)
            return False
        previous = node.status
        node.status = status
        self._apply_load_status(node)
        if node.status != previous:
            self._logger.info(
                "node_status_changed",
                node_id=node_id,
                previous=previous.value,
                status=node.status.value,
            )
        return True

    def set_load(self, node_id: str, load: float) -> None:
        node = self._nodes.get(node_id)
        if node is None:
            return
        node.current_load = clamp(load, 0.0, 100.0)
        self._apply_load_status(node)

    def _apply_load_status(self, node: MeshNode) -> None:
        if node.status not in ONLINE_STATUSES:
            return
        if node.current_load >= self._config.busy_load_threshold:
            node.status = NodeStatus.BUSY
        else:
            node.status = NodeStatus.ACTIVE

    # ─── Resource Reservations ───────────────────────────────────────

    def reserve(self, node_id: str, requirements: ResourceVector) -> None:
        node = self._nodes.get(node_id)
        if node is not None:
            node.available = node.available.subtract(requirements)

    def release(self, node_id: str, requirements: ResourceVector) -> None:
        node = self._nodes.get(node_id)
        if node is not None:
            node.available = self._cap_available(node, node.available.add(requirements))

    @staticmethod
    def _cap_available(node: MeshNode, available: ResourceVector) -> ResourceVector:
        cap = node.max_capacity
        return ResourceVector(
            cpu=min(available.cpu, cap.cpu),
            memory=min(available.memory, cap.memory),
            bandwidth=min(available.bandwidth, cap.bandwidth),
            storage=min(available.storage, cap.storage),
        )

    # ─── Queries ─────────────────────────────────────────────────────

    def get(self, node_id: str) -> MeshNode | None:
        """The live registry record. Callers inside the lock only."""
        return self._nodes.get(node_id)

    def nodes(self) -> list[MeshNode]:
        """Live registry records in insertion order. Callers inside the lock only."""
        return list(self._nodes.values())

    def active_nodes(self) -> list[MeshNode]:
        return [n for n in self._nodes.values() if n.status == NodeStatus.ACTIVE]

    def online_nodes(self) -> list[MeshNode]:
        return [n for n in self._nodes.values() if n.status in ONLINE_STATUSES]

    def neighbors(self, node_id: str) -> set[str]:
        return set(self._connections.get(node_id, set()))

    def is_connected(self, a: str, b: str) -> bool:
        return b in self._connections.get(a, set())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def snapshot(self) -> TopologySnapshot:
        return TopologySnapshot(
            nodes={nid: n.model_copy(deep=True) for nid, n in self._nodes.items()},
            connections={nid: frozenset(peers) for nid, peers in self._connections.items()},
            routing_table={src: dict(dests) for src, dests in self._routing.items()},
        )

    @property
    def stats(self) -> dict[str, Any]:
        by_status: dict[str, int] = {s.value: 0 for s in NodeStatus}
        for node in self._nodes.values():
            by_status[node.status.value] += 1
        return {
            "nodes": len(self._nodes),
            "edges": sum(len(p) for p in self._connections.values()) // 2,
            "routing_entries": sum(len(d) for d in self._routing.values()),
            "routing_rebuilds": self._routing_rebuilds,
            "by_status": by_status,
        }
