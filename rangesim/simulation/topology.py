"""
Topology generation for the range placement simulator.

Builds a fresh cluster from a ClusterConfig: picks regions from a fixed
catalog, spreads nodes evenly over them and their zones, and places the
initial ranges.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .cluster import ClusterState
from .config import ClusterConfig
from .errors import CapacityError
from .node import Node
from .placement import ReplicaPlacer

logger = logging.getLogger(__name__)

ZONES = ("a", "b", "c")

REGION_CATALOG: dict[str, tuple[str, ...]] = {
    "us-east": ZONES,
    "us-west": ZONES,
    "eu-west": ZONES,
    "eu-central": ZONES,
    "ap-southeast": ZONES,
    "ap-northeast": ZONES,
    "sa-east": ZONES,
    "af-south": ZONES,
    "au-southeast": ZONES,
    "ca-central": ZONES,
}


def select_regions(count: int, rng: np.random.Generator) -> list[str]:
    """Pick ``count`` distinct regions from the catalog at random."""
    names = list(REGION_CATALOG)
    count = min(count, len(names))
    return [names[i] for i in rng.choice(len(names), size=count, replace=False)]


def random_location(rng: np.random.Generator) -> tuple[str, str]:
    """Pick a random (region, zone) from the whole catalog."""
    names = list(REGION_CATALOG)
    region = names[rng.integers(len(names))]
    zones = REGION_CATALOG[region]
    return region, zones[rng.integers(len(zones))]


def generate_nodes(cluster: ClusterState, regions: list[str], node_count: int) -> list[Node]:
    """Create ``node_count`` online nodes spread over ``regions``.

    Each region receives ceil(node_count / len(regions)) nodes in turn until
    the total is reached, so trailing regions may get fewer (or none).
    Within a region nodes cycle through the zones.

    Args:
        cluster: Cluster to add the nodes to. Modified in place.
        regions: Region names, in the order to fill them.
        node_count: Total number of nodes to create.

    Returns:
        The created nodes.
    """
    per_region = math.ceil(node_count / len(regions))
    created: list[Node] = []
    for region in regions:
        zones = REGION_CATALOG[region]
        for i in range(min(per_region, node_count - len(created))):
            node = Node(node_id=cluster.next_node_id(), region=region, zone=zones[i % len(zones)])
            cluster.add_node(node)
            created.append(node)
    return created


def build_cluster(config: ClusterConfig, rng: np.random.Generator) -> tuple[ClusterState, list[str]]:
    """Build a new cluster from scratch.

    Args:
        config: Desired cluster shape.
        rng: Random source for region choice and placement.

    Returns:
        Tuple of (cluster, selected region names).

    Raises:
        CapacityError: Fewer nodes than the replication factor.
    """
    cluster = ClusterState(replication_factor=config.replication_factor)
    regions = select_regions(config.region_count, rng)
    generate_nodes(cluster, regions, config.node_count)

    online = len(cluster.online_nodes())
    if online < config.replication_factor:
        raise CapacityError(
            config.replication_factor,
            online,
            f"Replication factor {config.replication_factor} needs at least "
            f"{config.replication_factor} nodes, configuration has {online}.",
        )

    placer = ReplicaPlacer(rng)
    for _ in range(config.range_count):
        placer.place_range(cluster)

    logger.info("Built %r across regions %s", cluster, ", ".join(regions))
    return cluster, regions
