"""
Derived views of a cluster for display.

Nothing here feeds back into placement decisions; these are read-only
summaries built from a ClusterState on request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .cluster import ClusterState


class RegionStatus(Enum):
    """Aggregate availability of the nodes in a region."""

    ONLINE = "online"
    OFFLINE = "offline"
    MIXED = "mixed"


@dataclass(frozen=True)
class RegionSummary:
    """One region as shown on a cluster map.

    Attributes:
        name: Region name.
        zones: Zones that host at least one node, sorted.
        node_ids: Member node ids in creation order.
        status: ONLINE if every member is online, OFFLINE if none is.
        lease_load: Load of the ranges whose leaseholder is in this region.
    """

    name: str
    zones: tuple[str, ...]
    node_ids: tuple[str, ...]
    status: RegionStatus
    lease_load: int


@dataclass
class ClusterMetrics:
    """Point-in-time health summary of a cluster.

    Attributes:
        node_count: Total number of nodes.
        online_count: Number of online nodes.
        range_count: Total number of ranges.
        under_replicated: Ids of ranges with fewer online replicas than the
            replication factor.
        unavailable: Ids of ranges whose leaseholder is offline.
        replica_counts: Replicas hosted per node id.
        region_loads: Leaseholder load per region.
        replica_spread: Standard deviation of replica counts across online
            nodes (0.0 when perfectly balanced or no node is online).
    """

    node_count: int
    online_count: int
    range_count: int
    under_replicated: list[str] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)
    replica_counts: dict[str, int] = field(default_factory=dict)
    region_loads: dict[str, int] = field(default_factory=dict)
    replica_spread: float = 0.0

    @property
    def is_healthy(self) -> bool:
        return not self.under_replicated and not self.unavailable

    @classmethod
    def from_cluster(cls, cluster: ClusterState) -> "ClusterMetrics":
        online = cluster.online_nodes()
        online_counts = np.array([cluster.replica_counts[n.node_id] for n in online], dtype=float)
        return cls(
            node_count=len(cluster.nodes),
            online_count=len(online),
            range_count=len(cluster.ranges),
            under_replicated=[
                r.range_id for r in cluster.ranges.values() if cluster.is_under_replicated(r)
            ],
            unavailable=[
                r.range_id for r in cluster.ranges.values() if not cluster.is_online(r.leaseholder)
            ],
            replica_counts={n: cluster.replica_counts[n] for n in cluster.nodes},
            region_loads={region: cluster.region_load(region) for region in cluster.regions()},
            replica_spread=float(np.std(online_counts)) if online_counts.size else 0.0,
        )


def summarize_regions(cluster: ClusterState) -> list[RegionSummary]:
    """Summarize every region that has nodes, in order of first appearance."""
    summaries = []
    for region, nodes in cluster.nodes_by_region().items():
        online = sum(1 for n in nodes if n.is_online)
        if online == len(nodes):
            status = RegionStatus.ONLINE
        elif online == 0:
            status = RegionStatus.OFFLINE
        else:
            status = RegionStatus.MIXED
        summaries.append(
            RegionSummary(
                name=region,
                zones=tuple(sorted({n.zone for n in nodes})),
                node_ids=tuple(n.node_id for n in nodes),
                status=status,
                lease_load=cluster.region_load(region),
            )
        )
    return summaries
