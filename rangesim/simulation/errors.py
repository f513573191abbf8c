"""
Exception types raised by the cluster engine.

Only capacity and configuration problems are errors. Unknown node or range
ids are ignored, and degraded states (under-replicated ranges, a lease stuck
on an offline node) are regular, observable cluster states.
"""


class ClusterError(Exception):
    """Base class for cluster engine errors."""


class CapacityError(ClusterError):
    """Raised when an operation needs more online nodes than the cluster has.

    Attributes:
        required: Number of online nodes the operation needs.
        available: Number of online nodes that exist.
    """

    def __init__(self, required: int, available: int, message: str | None = None):
        self.required = required
        self.available = available
        if message is None:
            message = (
                f"Not enough online nodes: need at least {required}, "
                f"have {available}"
            )
        super().__init__(message)


class ConfigError(ClusterError, ValueError):
    """Raised when a cluster configuration is out of bounds."""
