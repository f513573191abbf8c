"""
Failure handling for the range placement simulator.

When a node goes offline every range it hosts first hands its lease to a
surviving replica (if the failed node held it) and then re-homes the lost
replica on another online node, keeping the range spread over as many
regions and zones as possible.
"""

from __future__ import annotations

import logging

from .cluster import ClusterState
from .node import Node
from .ranges import Range

logger = logging.getLogger(__name__)


class FailureMigrator:
    """Moves leases and replicas off a node that just went offline."""

    def on_node_offline(self, cluster: ClusterState, node_id: str) -> None:
        """React to ``node_id`` going offline.

        Ranges are processed in creation order and each sees the replica
        counts left by the ones before it.

        Args:
            cluster: Cluster state, with the node already marked offline.
            node_id: The node that failed.
        """
        failed = cluster.get_node(node_id)
        if failed is None:
            return

        for range_ in cluster.ranges.values():
            if not range_.has_replica(node_id):
                continue
            if range_.leaseholder == node_id:
                self._hand_over_lease(cluster, range_, failed)
            self._replace_replica(cluster, range_, failed)

    def _hand_over_lease(self, cluster: ClusterState, range_: Range, failed: Node) -> None:
        survivors = [
            cluster.nodes[node_id]
            for node_id in cluster.online_replicas(range_)
            if node_id != failed.node_id
        ]
        if not survivors:
            logger.warning(
                "%s: no online replica to take the lease from %s",
                range_.range_id,
                failed.node_id,
            )
            return

        elsewhere = [n for n in survivors if n.region != failed.region]
        target = (elsewhere or survivors)[0]
        cluster.move_lease(range_, target.node_id)
        logger.debug("%s: lease %s -> %s", range_.range_id, failed.node_id, target.node_id)

    def _replace_replica(self, cluster: ClusterState, range_: Range, failed: Node) -> None:
        replacement = self.choose_replacement(cluster, range_, failed.node_id)
        if replacement is None:
            logger.warning(
                "%s: no node available to replace %s, range is under-replicated",
                range_.range_id,
                failed.node_id,
            )
            return

        cluster.replace_replica(range_, failed.node_id, replacement.node_id)
        logger.debug(
            "%s: replica %s -> %s", range_.range_id, failed.node_id, replacement.node_id
        )
        # The lease could not move to a survivor, so it follows the slot.
        if range_.leaseholder == failed.node_id:
            cluster.move_lease(range_, replacement.node_id)

    @staticmethod
    def choose_replacement(cluster: ClusterState, range_: Range, departing_id: str) -> Node | None:
        """Pick an online node to take over ``departing_id``'s replica.

        Preference, least-loaded within each tier:
        1. a node in a region the range does not use yet,
        2. a node in a zone the range does not use yet,
        3. any online node not already hosting the range.

        Returns:
            The replacement node, or None if every online node already
            hosts the range.
        """
        available = [
            n for n in cluster.online_nodes() if not range_.has_replica(n.node_id)
        ]
        if not available:
            return None

        remaining = [
            cluster.nodes[node_id]
            for node_id in range_.replicas
            if node_id != departing_id and node_id in cluster.nodes
        ]
        used_regions = {n.region for n in remaining}
        used_zones = {n.zone_key for n in remaining}

        new_region = [n for n in available if n.region not in used_regions]
        if new_region:
            return cluster.least_loaded(new_region)
        new_zone = [n for n in available if n.zone_key not in used_zones]
        if new_zone:
            return cluster.least_loaded(new_zone)
        return cluster.least_loaded(available)
