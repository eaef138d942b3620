"""
ecanmesh — Mesh

Node registry and routing (MeshTopology), placement and rebalancing
(LoadBalancer), and the coordinator that runs them under the shared lock.
"""

from ecanmesh.systems.mesh.balancer import (
    CognitivePrioritySelector,
    LeastLoadSelector,
    LoadBalancer,
    NodeSelector,
    RoundRobinSelector,
    WeightedSelector,
    build_selector,
)
from ecanmesh.systems.mesh.coordinator import MeshCoordinator
from ecanmesh.systems.mesh.topology import MeshTopology
from ecanmesh.systems.mesh.types import (
    AttentionFlowMetrics,
    BalancingStrategy,
    MeshNode,
    MeshPerformanceMetrics,
    NodeStatus,
    RebalanceResult,
    ResourceUtilization,
    TaskPlacement,
    TopologySnapshot,
)

__all__ = [
    "AttentionFlowMetrics",
    "BalancingStrategy",
    "CognitivePrioritySelector",
    "LeastLoadSelector",
    "LoadBalancer",
    "MeshCoordinator",
    "MeshNode",
    "MeshPerformanceMetrics",
    "MeshTopology",
    "NodeSelector",
    "NodeStatus",
    "RebalanceResult",
    "ResourceUtilization",
    "RoundRobinSelector",
    "TaskPlacement",
    "TopologySnapshot",
    "WeightedSelector",
    "build_selector",
]
