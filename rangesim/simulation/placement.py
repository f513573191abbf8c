"""
Replica placement for new ranges.

Placement is greedy and diversity first: spread replicas over as many
regions as possible, then over as many zones as possible, and within each
choice take the node that currently hosts the fewest replicas. Region and
zone visiting order is randomized, so two placements on identical clusters
may differ; the priority order never does.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

import numpy as np

from .cluster import ClusterState
from .errors import CapacityError
from .node import Node
from .ranges import BASELINE_LOAD, Range

logger = logging.getLogger(__name__)


def shuffled(items: list, rng: np.random.Generator) -> list:
    """Return a new list with the items in random order."""
    return [items[i] for i in rng.permutation(len(items))]


class ReplicaPlacer:
    """Chooses the nodes and leaseholder for new ranges.

    Attributes:
        rng: Random source for region and zone ordering.
    """

    def __init__(self, rng: np.random.Generator):
        self.rng = rng

    def place_range(self, cluster: ClusterState) -> Range:
        """Create a new range on the cluster's online nodes.

        Args:
            cluster: Cluster to add the range to. Modified in place.

        Returns:
            The newly added range.

        Raises:
            CapacityError: Fewer online nodes than the replication factor.
        """
        online = cluster.online_nodes()
        factor = cluster.replication_factor
        if len(online) < factor:
            raise CapacityError(
                factor,
                len(online),
                f"Not enough online nodes to create a new range. "
                f"Need at least {factor} nodes, have {len(online)}.",
            )

        selected = self.select_nodes(cluster, online, factor)
        leaseholder = self.choose_leaseholder(cluster, selected)
        new_range = Range(
            range_id=cluster.next_range_id(),
            replicas=[n.node_id for n in selected],
            leaseholder=leaseholder.node_id,
            load=BASELINE_LOAD,
        )
        cluster.add_range(new_range)
        logger.debug("Placed %r", new_range)
        return new_range

    def select_nodes(
        self, cluster: ClusterState, candidates: list[Node], factor: int
    ) -> list[Node]:
        """Pick ``factor`` distinct nodes from ``candidates``.

        Args:
            cluster: Cluster supplying the current replica counts.
            candidates: Online nodes eligible to host a replica.
            factor: Number of nodes to pick. Must not exceed len(candidates).

        Returns:
            The chosen nodes, in the order they were picked.
        """
        # Scratch counts so each pick steers the next one away from it.
        counts = Counter(cluster.replica_counts)

        zones_by_region: dict[str, dict[str, list[Node]]] = defaultdict(lambda: defaultdict(list))
        for node in candidates:
            zones_by_region[node.region][node.zone].append(node)
        regions = list(zones_by_region)

        selected: list[Node] = []
        used_zones: set[tuple[str, str]] = set()

        def take(node: Node) -> None:
            selected.append(node)
            used_zones.add(node.zone_key)
            counts[node.node_id] += 1

        if len(regions) >= factor:
            for region in shuffled(regions, self.rng)[:factor]:
                take(self._least_loaded_in_zones(cluster, zones_by_region[region], counts))
            return selected

        # Fewer regions than replicas: one per region first.
        for region in regions:
            zones = zones_by_region[region]
            unused = {z: nodes for z, nodes in zones.items() if (region, z) not in used_zones}
            take(self._least_loaded_in_zones(cluster, unused or zones, counts))
            if len(selected) == factor:
                return selected

        # Then fresh zones inside the regions already in use.
        for region in shuffled(regions, self.rng):
            for zone, nodes in zones_by_region[region].items():
                if (region, zone) in used_zones:
                    continue
                take(cluster.least_loaded(nodes, counts))
                if len(selected) == factor:
                    return selected

        # Finally anything left, least loaded first.
        chosen = {n.node_id for n in selected}
        remaining = sorted(
            (n for n in candidates if n.node_id not in chosen),
            key=lambda n: counts[n.node_id],
        )
        for node in remaining[: factor - len(selected)]:
            take(node)
        return selected

    @staticmethod
    def _least_loaded_in_zones(
        cluster: ClusterState, zones: dict[str, list[Node]], counts: Counter
    ) -> Node:
        """Least-loaded node across zones; ties go to the earlier zone."""
        best: Node | None = None
        for nodes in zones.values():
            candidate = cluster.least_loaded(nodes, counts)
            if best is None or counts[candidate.node_id] < counts[best.node_id]:
                best = candidate
        return best

    @staticmethod
    def choose_leaseholder(cluster: ClusterState, selected: list[Node]) -> Node:
        """Pick the replica whose region holds the most cluster nodes.

        Region size counts every node in the cluster, online or not, so
        leases gravitate towards the best provisioned regions. Ties go to
        the earliest selected replica.
        """
        region_sizes = Counter(n.region for n in cluster.nodes.values())
        return max(selected, key=lambda n: region_sizes[n.region])
