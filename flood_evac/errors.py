"""
Exception taxonomy for flood_evac.

``OutOfBoundsError`` and ``NoRouteFound`` are recoverable conditions that
callers handle locally.  ``DataAcquisitionError`` and ``EmptyNetworkError``
propagate to whoever set the run up.  ``InvariantViolation`` marks a
programming error.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class FloodEvacError(Exception):
    """Base class for all flood_evac errors."""


class OutOfBoundsError(FloodEvacError, IndexError):
    """A grid cell or raster coordinate outside the valid range was requested."""


class NoRouteFound(FloodEvacError):
    """No next hop exists from ``node`` toward any target.

    ``permanent`` is True when the node was not part of the graph the route
    table was computed for, so no future recomputation can help.
    """

    def __init__(self, node, permanent: bool = False):
        self.node = node
        self.permanent = permanent
        kind = "permanently unroutable" if permanent else "no route"
        super().__init__(f"{kind} from {node!r}")


class DataAcquisitionError(FloodEvacError):
    """An external road, building or elevation source failed."""


class EmptyNetworkError(FloodEvacError):
    """The region has no navigable roads, so no agent can be spawned."""


class InvariantViolation(FloodEvacError, AssertionError):
    """An internal invariant does not hold."""


def check_invariant(condition: bool, message: str) -> bool:
    """Raise ``InvariantViolation`` if *condition* is false.

    Under ``python -O`` the violation is logged instead and False is
    returned, leaving the caller to clamp.
    """
    if condition:
        return True
    if __debug__:
        raise InvariantViolation(message)
    logger.error("Invariant violated: %s", message)
    return False
