"""
Boundaries to the systems this core depends on but does not own.

  - ObstacleStore: reads obstacles near a point, applies vote increments,
    and accepts fire-and-forget validation events.  Treated as eventually
    consistent; the core never does read-modify-write against it.
  - RoutingClient: walking directions with optional waypoints.
    directions_http.DirectionsClient is the production implementation.

Routing errors live here rather than in the HTTP client so any
RoutingClient (including test doubles) can signal quota exhaustion in a
way the detour engine understands.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from models import Location, Route

logger = logging.getLogger(__name__)


class RoutingError(Exception):
    """Raised when the routing provider returns a non-retryable error."""

    pass


class RoutingQuotaError(RoutingError):
    """Raised when the routing provider signals rate-limit or quota exhaustion."""

    pass


class RoutingUnavailableError(RoutingError):
    """Raised when the routing provider cannot be reached at all."""

    pass


class ObstacleStore(Protocol):
    def get_obstacles_in_area(self, lat: float, lng: float,
                              radius_km: float) -> List[Dict[str, Any]]:
        ...

    def increment_vote(self, obstacle_id: str, vote: str) -> None:
        """*vote* is "upvote" or "downvote"."""
        ...

    def record_validation_event(self, obstacle_id: str, action: str,
                                timestamp: datetime,
                                location: Optional[Location],
                                method: str) -> None:
        ...


class RoutingClient(Protocol):
    def get_route(self, origin: Location, destination: Location,
                  waypoints: Optional[Sequence[Location]] = None) -> Optional[Route]:
        ...

    def get_routes(self, origin: Location, destination: Location,
                   alternatives: bool = False) -> List[Route]:
        ...


def best_effort(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
    """Call *fn*, logging and discarding any exception.

    For side effects that must never block or fail the caller, such as
    recording a validation event.  Returns True if the call succeeded.
    """
    try:
        fn(*args, **kwargs)
        return True
    except Exception:
        logger.warning("Best-effort call %s failed",
                       getattr(fn, "__name__", repr(fn)), exc_info=True)
        return False
