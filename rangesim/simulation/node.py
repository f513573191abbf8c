"""
Node model for the range placement simulator.
"""

from dataclasses import dataclass, replace
from enum import Enum


class NodeStatus(Enum):
    """Availability of a node."""

    ONLINE = "online"
    OFFLINE = "offline"

    def flipped(self) -> "NodeStatus":
        """Return the opposite status."""
        return NodeStatus.OFFLINE if self is NodeStatus.ONLINE else NodeStatus.ONLINE


@dataclass
class Node:
    """A database node placed in a region and zone.

    Attributes:
        node_id: Unique identifier ("n1", "n2", ...).
        region: Region the node lives in.
        zone: Zone within the region.
        status: Whether the node is currently serving.
    """

    node_id: str
    region: str
    zone: str
    status: NodeStatus = NodeStatus.ONLINE

    @property
    def is_online(self) -> bool:
        return self.status is NodeStatus.ONLINE

    @property
    def zone_key(self) -> tuple[str, str]:
        """Zones are only unique within a region."""
        return (self.region, self.zone)

    def snapshot(self) -> "Node":
        """Return a detached copy of this node."""
        return replace(self)

    def __repr__(self) -> str:
        return f"Node({self.node_id}, {self.region}/{self.zone}, {self.status.value})"
