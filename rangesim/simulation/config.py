"""
Cluster configuration for the range placement simulator.
"""

from dataclasses import dataclass

from .errors import ConfigError

# Inclusive bounds for each configuration field.
REGION_COUNT_BOUNDS = (1, 10)
REPLICATION_FACTOR_BOUNDS = (1, 7)
NODE_COUNT_BOUNDS = (1, 30)
RANGE_COUNT_BOUNDS = (1, 30)


@dataclass(frozen=True)
class ClusterConfig:
    """Shape of a cluster to build.

    Applying a configuration discards the previous cluster entirely.

    Attributes:
        region_count: Number of regions to spread nodes over (1-10).
        replication_factor: Replicas per range (1-7).
        node_count: Number of nodes to create (1-30).
        range_count: Number of ranges to create (1-30).
    """

    region_count: int = 3
    replication_factor: int = 3
    node_count: int = 6
    range_count: int = 3

    def __post_init__(self) -> None:
        for name, (low, high) in (
            ("region_count", REGION_COUNT_BOUNDS),
            ("replication_factor", REPLICATION_FACTOR_BOUNDS),
            ("node_count", NODE_COUNT_BOUNDS),
            ("range_count", RANGE_COUNT_BOUNDS),
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if not low <= value <= high:
                raise ConfigError(
                    f"{name} must be in [{low}, {high}], got {value}"
                )


DEFAULT_CONFIG = ClusterConfig()
