"""
Replica movement records for the range placement simulator.

Every time a replica or a lease changes hands the engine appends a
ReplicaMovement to the affected range's MovementLog. Visualizations use
these records to animate moves; the engine itself never reads them back.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator

MOVEMENT_HISTORY_SIZE = 10


@dataclass(frozen=True)
class ReplicaMovement:
    """A replica (or lease) moving from one node to another.

    Attributes:
        range_id: Range whose replica moved.
        from_node_id: Node that gave up the replica or lease.
        to_node_id: Node that received it.
        is_leaseholder: True if this records a lease transfer.
        timestamp: Wall-clock time of the move, in seconds since the epoch.
    """

    range_id: str
    from_node_id: str
    to_node_id: str
    is_leaseholder: bool = False
    timestamp: float = field(default_factory=time.time)

    def __repr__(self) -> str:
        kind = "lease" if self.is_leaseholder else "replica"
        return (
            f"ReplicaMovement({self.range_id}, {kind}, "
            f"{self.from_node_id} -> {self.to_node_id})"
        )


class MovementLog:
    """Fixed-capacity history of movements, oldest first.

    Appending beyond capacity evicts the oldest entry.
    """

    def __init__(
        self,
        movements: "list[ReplicaMovement] | None" = None,
        capacity: int = MOVEMENT_HISTORY_SIZE,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        self._entries: deque[ReplicaMovement] = deque(movements or (), maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def append(self, movement: ReplicaMovement) -> None:
        self._entries.append(movement)

    def latest(self) -> ReplicaMovement | None:
        """Return the most recent movement, or None if nothing moved yet."""
        return self._entries[-1] if self._entries else None

    def copy(self) -> "MovementLog":
        return MovementLog(list(self._entries), capacity=self.capacity)

    def __iter__(self) -> Iterator[ReplicaMovement]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> ReplicaMovement:
        return self._entries[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MovementLog):
            return NotImplemented
        return list(self._entries) == list(other._entries)

    def __repr__(self) -> str:
        return f"MovementLog({list(self._entries)!r})"
