"""
Range model for the range placement simulator.
"""

from dataclasses import dataclass, field

from .events import MovementLog

BASELINE_LOAD = 10
HOT_LOAD = 80


@dataclass
class Range:
    """A replicated shard of data.

    Attributes:
        range_id: Unique identifier ("r1", "r2", ...).
        replicas: Ordered node ids hosting a copy. No duplicates.
        leaseholder: Node id of the replica serving as primary.
            Always one of ``replicas``.
        load: Requests per second served by the range.
        recent_movements: The last few replica and lease moves.
    """

    range_id: str
    replicas: list[str]
    leaseholder: str
    load: int = BASELINE_LOAD
    recent_movements: MovementLog = field(default_factory=MovementLog)

    def has_replica(self, node_id: str) -> bool:
        return node_id in self.replicas

    def snapshot(self) -> "Range":
        """Return a copy that shares no mutable state with this range."""
        return Range(
            range_id=self.range_id,
            replicas=list(self.replicas),
            leaseholder=self.leaseholder,
            load=self.load,
            recent_movements=self.recent_movements.copy(),
        )

    def __repr__(self) -> str:
        return (
            f"Range({self.range_id}, replicas={self.replicas}, "
            f"leaseholder={self.leaseholder}, load={self.load})"
        )
