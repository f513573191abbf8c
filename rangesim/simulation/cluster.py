"""
Cluster state management for the range placement simulator.

Holds the nodes and ranges of one cluster and keeps a per-node replica
count up to date as replicas move, so placement decisions never have to
rescan every range.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .events import ReplicaMovement
from .node import Node
from .ranges import Range


@dataclass
class ClusterState:
    """Complete state of a cluster.

    Attributes:
        replication_factor: Target number of replicas per range.
        nodes: Dictionary mapping node_id to Node, in creation order.
        ranges: Dictionary mapping range_id to Range, in creation order.
        replica_counts: Replicas hosted per node, whatever the node's status.
            Maintained by add_range and replace_replica.
    """

    replication_factor: int
    nodes: dict[str, Node] = field(default_factory=dict)
    ranges: dict[str, Range] = field(default_factory=dict)
    replica_counts: Counter = field(default_factory=Counter)
    _node_seq: int = field(default=0, init=False, repr=False, compare=False)
    _range_seq: int = field(default=0, init=False, repr=False, compare=False)

    # -- ids -------------------------------------------------------------

    def next_node_id(self) -> str:
        self._node_seq += 1
        return f"n{self._node_seq}"

    def next_range_id(self) -> str:
        self._range_seq += 1
        return f"r{self._range_seq}"

    # -- queries ---------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def get_range(self, range_id: str) -> Range | None:
        return self.ranges.get(range_id)

    def online_nodes(self) -> list[Node]:
        return [n for n in self.nodes.values() if n.is_online]

    def is_online(self, node_id: str) -> bool:
        node = self.nodes.get(node_id)
        return node is not None and node.is_online

    def nodes_in_region(self, region: str) -> list[Node]:
        return [n for n in self.nodes.values() if n.region == region]

    def nodes_by_region(self) -> dict[str, list[Node]]:
        """Group nodes by their region.

        Returns:
            Dictionary mapping region name to list of nodes in that region.
        """
        by_region: dict[str, list[Node]] = defaultdict(list)
        for node in self.nodes.values():
            by_region[node.region].append(node)
        return dict(by_region)

    def regions(self) -> list[str]:
        """Regions that have at least one node, in order of first appearance."""
        return list(self.nodes_by_region())

    def replica_nodes(self, range_: Range) -> list[Node]:
        return [self.nodes[node_id] for node_id in range_.replicas if node_id in self.nodes]

    def online_replicas(self, range_: Range) -> list[str]:
        """Replica node ids of a range that are online, in replica order."""
        return [node_id for node_id in range_.replicas if self.is_online(node_id)]

    def is_under_replicated(self, range_: Range) -> bool:
        return len(self.online_replicas(range_)) < self.replication_factor

    def region_load(self, region: str) -> int:
        """Total load of the ranges whose leaseholder lives in ``region``."""
        total = 0
        for r in self.ranges.values():
            leaseholder = self.nodes.get(r.leaseholder)
            if leaseholder is not None and leaseholder.region == region:
                total += r.load
        return total

    def least_loaded(self, nodes: Iterable[Node], counts: Counter | None = None) -> Node | None:
        """Return the node hosting the fewest replicas.

        Ties go to the first node in iteration order.

        Args:
            nodes: Candidate nodes.
            counts: Replica counts to use. Defaults to the live counts.

        Returns:
            The least-loaded node, or None if there are no candidates.
        """
        counts = self.replica_counts if counts is None else counts
        best: Node | None = None
        for node in nodes:
            if best is None or counts[node.node_id] < counts[best.node_id]:
                best = node
        return best

    def validate(self) -> None:
        """Check the placement invariants over the whole cluster.

        Raises:
            ValueError: A range has the wrong number of distinct replicas,
                names an unknown node, has a leaseholder outside its
                replicas, or replica_counts disagrees with the ranges.
        """
        recount: Counter = Counter()
        for r in self.ranges.values():
            if len(r.replicas) != self.replication_factor or len(set(r.replicas)) != len(r.replicas):
                raise ValueError(
                    f"{r.range_id} needs {self.replication_factor} distinct replicas, has {r.replicas}"
                )
            unknown = [n for n in r.replicas if n not in self.nodes]
            if unknown:
                raise ValueError(f"{r.range_id} has replicas on unknown nodes {unknown}")
            if r.leaseholder not in r.replicas:
                raise ValueError(f"{r.range_id} leaseholder {r.leaseholder} is not a replica")
            recount.update(r.replicas)
        if recount != self.replica_counts:
            raise ValueError("replica_counts does not match the replicas of the ranges")

    # -- mutations -------------------------------------------------------

    def add_node(self, node: Node) -> None:
        self.nodes[node.node_id] = node

    def add_range(self, range_: Range) -> None:
        self.ranges[range_.range_id] = range_
        self.replica_counts.update(range_.replicas)

    def replace_replica(self, range_: Range, old_node_id: str, new_node_id: str) -> None:
        """Move the replica in ``old_node_id``'s slot to ``new_node_id``.

        The slot keeps its position in the replica list. The lease is not
        touched; callers move it with move_lease.
        """
        if new_node_id in range_.replicas:
            raise ValueError(f"{new_node_id} already hosts a replica of {range_.range_id}")
        slot = range_.replicas.index(old_node_id)
        range_.replicas[slot] = new_node_id
        self.replica_counts[old_node_id] -= 1
        self.replica_counts[new_node_id] += 1
        range_.recent_movements.append(
            ReplicaMovement(range_.range_id, old_node_id, new_node_id, is_leaseholder=False)
        )

    def move_lease(self, range_: Range, new_node_id: str) -> bool:
        """Hand the lease of a range to another of its replicas.

        Returns:
            True if the leaseholder changed.
        """
        old_node_id = range_.leaseholder
        if new_node_id == old_node_id:
            return False
        if new_node_id not in range_.replicas:
            raise ValueError(f"{new_node_id} is not a replica of {range_.range_id}")
        range_.leaseholder = new_node_id
        range_.recent_movements.append(
            ReplicaMovement(range_.range_id, old_node_id, new_node_id, is_leaseholder=True)
        )
        return True

    def __repr__(self) -> str:
        online = len(self.online_nodes())
        under = sum(1 for r in self.ranges.values() if self.is_under_replicated(r))
        return (
            f"ClusterState({online}/{len(self.nodes)} online/total nodes, "
            f"{len(self.ranges)} ranges, rf={self.replication_factor}, "
            f"{under} under-replicated)"
        )
