"""
Cluster engine: the public face of the range placement simulator.

The engine owns one ClusterState and runs every mutation to completion
before returning. Callers only ever see snapshots, so nothing outside the
engine can break the placement invariants:

- every range has exactly replication_factor distinct replicas on existing
  nodes, one of which is its leaseholder;
- each range remembers at most its last 10 movements;
- node ids are unique and never reused.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import replace

import numpy as np

from .cluster import ClusterState
from .config import DEFAULT_CONFIG, ClusterConfig
from .errors import ConfigError
from .failover import FailureMigrator
from .metrics import ClusterMetrics, RegionSummary, summarize_regions
from .node import Node, NodeStatus
from .placement import ReplicaPlacer
from .ranges import Range
from .rebalance import HotRangeBalancer, NewNodeRebalancer, RecoveryRebalancer
from .topology import build_cluster, random_location

logger = logging.getLogger(__name__)


class ClusterEngine:
    """Synchronous, single-threaded cluster placement engine.

    Randomized choices (region order, tie-break sampling, new node
    locations) all draw from one numpy Generator, so a seeded engine
    replays the same decisions.
    """

    def __init__(
        self,
        config: ClusterConfig = DEFAULT_CONFIG,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
        cluster: ClusterState | None = None,
    ):
        """Initialize the engine and build its first cluster.

        Args:
            config: Cluster shape to build.
            rng: Random source. Takes precedence over ``seed``.
            seed: Seed for a fresh random source. Unseeded if None.
            cluster: Prebuilt cluster to adopt instead of generating one.
                The engine works on a deep copy. Its replication factor
                must match ``config``; the other config fields are taken
                from the cluster itself.

        Raises:
            CapacityError: ``config`` asks for more replicas than nodes.
            ConfigError: ``cluster`` does not match ``config``, breaks a
                placement invariant, or is outside the configurable bounds.
        """
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.placer = ReplicaPlacer(self.rng)
        self.failure_migrator = FailureMigrator()
        self.recovery_rebalancer = RecoveryRebalancer(self.rng)
        self.new_node_rebalancer = NewNodeRebalancer(self.rng)
        self.hot_range_balancer = HotRangeBalancer()

        if cluster is None:
            self._cluster, self._regions = build_cluster(config, self.rng)
            self._config = config
        else:
            self._cluster, self._regions, self._config = self._adopt(cluster, config)

    @staticmethod
    def _adopt(
        cluster: ClusterState, config: ClusterConfig
    ) -> tuple[ClusterState, list[str], ClusterConfig]:
        if cluster.replication_factor != config.replication_factor:
            raise ConfigError(
                f"Cluster replication factor {cluster.replication_factor} does not "
                f"match configured {config.replication_factor}"
            )
        owned = copy.deepcopy(cluster)
        try:
            owned.validate()
        except ValueError as e:
            raise ConfigError(f"Cannot adopt cluster: {e}") from e

        regions = owned.regions()
        adopted_config = replace(
            config,
            region_count=len(regions),
            node_count=len(owned.nodes),
            range_count=len(owned.ranges),
        )
        logger.info("Adopted %r", owned)
        return owned, regions, adopted_config

    # -- configuration ---------------------------------------------------

    def configure(self, config: ClusterConfig) -> tuple[list[Node], list[Range]]:
        """Discard the current cluster and build a new one.

        The current cluster is kept if building the new one fails.

        Returns:
            Snapshots of the new nodes and ranges.

        Raises:
            CapacityError: The configuration has fewer nodes than replicas.
        """
        cluster, regions = build_cluster(config, self.rng)
        self._cluster, self._regions, self._config = cluster, regions, config
        logger.info("Reconfigured: %s", config)
        return self.get_nodes(), self.get_ranges()

    def get_config(self) -> ClusterConfig:
        return self._config

    # -- queries ---------------------------------------------------------

    def get_nodes(self) -> list[Node]:
        return [n.snapshot() for n in self._cluster.nodes.values()]

    def get_ranges(self) -> list[Range]:
        return [r.snapshot() for r in self._cluster.ranges.values()]

    def get_node(self, node_id: str) -> Node | None:
        node = self._cluster.get_node(node_id)
        return node.snapshot() if node else None

    def get_range(self, range_id: str) -> Range | None:
        range_ = self._cluster.get_range(range_id)
        return range_.snapshot() if range_ else None

    def get_regions(self) -> list[RegionSummary]:
        return summarize_regions(self._cluster)

    def get_selected_regions(self) -> list[str]:
        """Regions chosen for the cluster at configuration time.

        When ``region_count`` exceeds ``node_count`` some of these regions
        never received a node. Regions that add_node introduces later are
        not listed; get_regions reports the regions that actually hold nodes.
        """
        return list(self._regions)

    def get_metrics(self) -> ClusterMetrics:
        return ClusterMetrics.from_cluster(self._cluster)

    # -- mutations -------------------------------------------------------

    def toggle_node(self, node_id: str) -> None:
        """Flip a node between online and offline and react to it.

        Unknown node ids are ignored.
        """
        node = self._cluster.get_node(node_id)
        if node is None:
            logger.debug("toggle_node: unknown node %s", node_id)
            return
        node.status = node.status.flipped()
        logger.info("Node %s is now %s", node_id, node.status.value)
        self._react(node)

    def toggle_region(self, region: str) -> None:
        """Flip every node in a region.

        A region with any offline member comes back online as a whole;
        a fully online region goes offline. Members are then handled one
        at a time in node order, exactly as if toggled individually.
        Unknown or empty regions are ignored.
        """
        members = self._cluster.nodes_in_region(region)
        if not members:
            logger.debug("toggle_region: no nodes in region %s", region)
            return

        any_offline = any(not n.is_online for n in members)
        status = NodeStatus.ONLINE if any_offline else NodeStatus.OFFLINE
        for node in members:
            node.status = status
        logger.info("Region %s (%d nodes) is now %s", region, len(members), status.value)
        for node in members:
            self._react(node)

    def add_node(self) -> Node:
        """Add an online node in a random region and zone.

        A few existing replicas are moved onto it.

        Returns:
            Snapshot of the new node.
        """
        region, zone = random_location(self.rng)
        node = Node(node_id=self._cluster.next_node_id(), region=region, zone=zone)
        self._cluster.add_node(node)
        logger.info("Added %r", node)
        self.new_node_rebalancer.on_node_added(self._cluster, node.node_id)
        return node.snapshot()

    def add_range(self) -> Range:
        """Create a new range on the online nodes.

        Returns:
            Snapshot of the new range.

        Raises:
            CapacityError: Fewer online nodes than the replication factor.
        """
        return self.placer.place_range(self._cluster).snapshot()

    def mark_range_hot(self, range_id: str) -> None:
        """Raise a range's load to the hot level and rebalance its lease.

        Unknown range ids are ignored.
        """
        if self._cluster.get_range(range_id) is None:
            logger.debug("mark_range_hot: unknown range %s", range_id)
            return
        self.hot_range_balancer.mark_hot(self._cluster, range_id)

    def _react(self, node: Node) -> None:
        if node.is_online:
            self.recovery_rebalancer.on_node_online(self._cluster, node.node_id)
        else:
            self.failure_migrator.on_node_offline(self._cluster, node.node_id)

    def __repr__(self) -> str:
        return f"ClusterEngine({self._cluster!r})"
