"""
Rebalancing strategies for the range placement simulator.

Three heuristics move replicas or leases after the cluster changes:

- RecoveryRebalancer: a node came back online. Repair under-replicated
  ranges with it first; otherwise shift a few replicas off overloaded nodes.
- NewNodeRebalancer: a node was added. Hand it a few replicas, preferring
  ones that sit in a region the range already uses twice.
- HotRangeBalancer: a range became hot. Move its lease out of a busy region.

Each touches at most three ranges per trigger so moves stay easy to follow.
"""

from __future__ import annotations

import logging
import math
from collections import Counter

import numpy as np

from .cluster import ClusterState
from .placement import shuffled
from .ranges import HOT_LOAD, Range

logger = logging.getLogger(__name__)

MAX_RANGES_PER_REBALANCE = 3
HOT_REGION_LOAD_THRESHOLD = 40


def rebalance_budget(candidate_count: int) -> int:
    """Number of ranges a single rebalance may touch."""
    return min(MAX_RANGES_PER_REBALANCE, math.ceil(candidate_count / 4))


def _hand_replica_to(cluster: ClusterState, range_: Range, victim_id: str, node_id: str) -> None:
    """Move ``victim_id``'s replica to ``node_id``; the lease follows it."""
    was_leaseholder = range_.leaseholder == victim_id
    cluster.replace_replica(range_, victim_id, node_id)
    if was_leaseholder:
        cluster.move_lease(range_, node_id)
    logger.debug("%s: replica %s -> %s", range_.range_id, victim_id, node_id)


class RecoveryRebalancer:
    """Puts a node that came back online to work.

    Attributes:
        rng: Random source for picking which ranges to rebalance.
    """

    def __init__(self, rng: np.random.Generator):
        self.rng = rng

    def on_node_online(self, cluster: ClusterState, node_id: str) -> None:
        """React to ``node_id`` coming back online.

        Args:
            cluster: Cluster state, with the node already marked online.
            node_id: The node that recovered.
        """
        if not cluster.is_online(node_id):
            return

        under_replicated = [r for r in cluster.ranges.values() if cluster.is_under_replicated(r)]
        if under_replicated:
            for range_ in under_replicated:
                self._repair(cluster, range_, node_id)
        else:
            self._spread_load(cluster, node_id)

    def _repair(self, cluster: ClusterState, range_: Range, node_id: str) -> None:
        if range_.has_replica(node_id):
            # A returning member picks up a lease stranded on an offline node.
            if not cluster.is_online(range_.leaseholder):
                cluster.move_lease(range_, node_id)
                logger.debug("%s: lease reclaimed by %s", range_.range_id, node_id)
            return
        online = cluster.online_replicas(range_)
        if len(online) >= cluster.replication_factor:
            return
        stale = [r for r in range_.replicas if r not in online]
        if not stale:
            return

        cluster.replace_replica(range_, stale[0], node_id)
        if range_.leaseholder not in online:
            cluster.move_lease(range_, node_id)
        logger.debug("%s: repaired, replica %s -> %s", range_.range_id, stale[0], node_id)

    def _spread_load(self, cluster: ClusterState, node_id: str) -> None:
        counts = cluster.replica_counts
        own = counts[node_id]
        overloaded = {
            n.node_id
            for n in cluster.online_nodes()
            if n.node_id != node_id and counts[n.node_id] > own + 1
        }
        if not overloaded:
            return

        candidates = [
            r
            for r in cluster.ranges.values()
            if not r.has_replica(node_id) and any(rep in overloaded for rep in r.replicas)
        ]
        for range_ in shuffled(candidates, self.rng)[: rebalance_budget(len(candidates))]:
            victim = self._pick_victim(cluster, range_, overloaded)
            _hand_replica_to(cluster, range_, victim, node_id)

    @staticmethod
    def _pick_victim(cluster: ClusterState, range_: Range, overloaded: set[str]) -> str:
        """Choose which overloaded replica of a range gives way.

        Prefer replicas in a region the range uses more than once, and
        within that, replicas that do not hold the lease.
        """
        region_counts = Counter(n.region for n in cluster.replica_nodes(range_))
        pool = [rep for rep in range_.replicas if rep in overloaded]
        crowded = [rep for rep in pool if region_counts[cluster.nodes[rep].region] > 1]
        pool = crowded or pool
        return next((rep for rep in pool if rep != range_.leaseholder), pool[0])


class NewNodeRebalancer:
    """Moves a few existing replicas onto a freshly added node.

    Attributes:
        rng: Random source for picking which ranges to rebalance.
    """

    def __init__(self, rng: np.random.Generator):
        self.rng = rng

    def on_node_added(self, cluster: ClusterState, node_id: str) -> None:
        new_node = cluster.get_node(node_id)
        if new_node is None or not new_node.is_online:
            return

        counts = cluster.replica_counts
        moves: list[tuple[Range, str]] = []
        for range_ in cluster.ranges.values():
            if range_.has_replica(node_id):
                continue
            by_region: dict[str, list[str]] = {}
            for node in cluster.replica_nodes(range_):
                by_region.setdefault(node.region, []).append(node.node_id)

            victim = None
            for region, node_ids in by_region.items():
                if len(node_ids) > 1 and region != new_node.region:
                    victim = max(node_ids, key=lambda n: counts[n])
                    break
            if victim is None:
                victim = max(range_.replicas, key=lambda n: counts[n])
            moves.append((range_, victim))

        for range_, victim in shuffled(moves, self.rng)[: rebalance_budget(len(cluster.ranges))]:
            _hand_replica_to(cluster, range_, victim, node_id)


class HotRangeBalancer:
    """Marks ranges hot and moves their lease out of overloaded regions."""

    def mark_hot(self, cluster: ClusterState, range_id: str) -> None:
        range_ = cluster.get_range(range_id)
        if range_ is None:
            return
        range_.load = HOT_LOAD
        self.balance_lease(cluster, range_)

    @staticmethod
    def balance_lease(cluster: ClusterState, range_: Range) -> None:
        """Move the lease to the online replica in the least busy region.

        Only acts when the leaseholder's region carries more than
        HOT_REGION_LOAD_THRESHOLD of leaseholder load and the range has an
        alternative online replica.
        """
        online = [cluster.nodes[n] for n in cluster.online_replicas(range_)]
        if len(online) <= 1:
            return
        leaseholder = cluster.get_node(range_.leaseholder)
        if leaseholder is None:
            return
        if cluster.region_load(leaseholder.region) <= HOT_REGION_LOAD_THRESHOLD:
            return

        region_loads = {n.region: cluster.region_load(n.region) for n in online}
        target = min(online, key=lambda n: region_loads[n.region])
        if cluster.move_lease(range_, target.node_id):
            logger.debug(
                "%s: hot lease %s -> %s", range_.range_id, leaseholder.node_id, target.node_id
            )
