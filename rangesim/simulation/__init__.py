"""
Range placement simulation package.

This package provides an in-memory model of a sharded, replicated database
cluster: where replicas of each range live, which replica holds the lease,
and how the cluster reacts to nodes and regions failing and recovering.
"""

from .errors import ClusterError, CapacityError, ConfigError
from .config import ClusterConfig, DEFAULT_CONFIG
from .node import Node, NodeStatus
from .events import ReplicaMovement, MovementLog, MOVEMENT_HISTORY_SIZE
from .ranges import Range, BASELINE_LOAD, HOT_LOAD
from .cluster import ClusterState
from .topology import REGION_CATALOG, build_cluster, generate_nodes, select_regions
from .placement import ReplicaPlacer
from .failover import FailureMigrator
from .rebalance import (
    RecoveryRebalancer,
    NewNodeRebalancer,
    HotRangeBalancer,
    HOT_REGION_LOAD_THRESHOLD,
    MAX_RANGES_PER_REBALANCE,
)
from .metrics import ClusterMetrics, RegionStatus, RegionSummary
from .engine import ClusterEngine

__all__ = [
    # Errors
    "ClusterError",
    "CapacityError",
    "ConfigError",
    # Config
    "ClusterConfig",
    "DEFAULT_CONFIG",
    # Node
    "Node",
    "NodeStatus",
    # Movements
    "ReplicaMovement",
    "MovementLog",
    "MOVEMENT_HISTORY_SIZE",
    # Range
    "Range",
    "BASELINE_LOAD",
    "HOT_LOAD",
    # Cluster
    "ClusterState",
    # Topology
    "REGION_CATALOG",
    "build_cluster",
    "generate_nodes",
    "select_regions",
    # Placement
    "ReplicaPlacer",
    # Failover and rebalancing
    "FailureMigrator",
    "RecoveryRebalancer",
    "NewNodeRebalancer",
    "HotRangeBalancer",
    "HOT_REGION_LOAD_THRESHOLD",
    "MAX_RANGES_PER_REBALANCE",
    # Metrics
    "ClusterMetrics",
    "RegionStatus",
    "RegionSummary",
    # Engine
    "ClusterEngine",
]
