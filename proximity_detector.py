"""
Proximity detection — which reported obstacles lie ahead on the route.

Each tick:
  1. Skip if the rider moved less than minimum_movement_m since the last
     successful tick (bounds obstacle-store query frequency).
  2. Fetch obstacles within detection_radius_m of the rider.
  3. Keep those within route_tolerance_m of the route polyline.
  4. Build an alert per survivor: distance, time to encounter at the
     profile's walking speed, community confidence, urgency.
  5. Sort by urgency (descending) and keep the top max_alerts.

Failure semantics: input-invalid ticks (no location, poor accuracy, a
route with fewer than two points) return [] and drop to IDLE.  Store
failures return [] for that tick without advancing the movement memo.
Malformed records are skipped with a warning.
"""

import logging
import threading
from dataclasses import replace
from typing import List, Optional, Sequence

from geo_math import distance_between, distance_to_polyline_m
from models import (
    DetectorState,
    Location,
    MobilityProfile,
    MobilityType,
    Obstacle,
    ObstacleStatus,
    ProximityAlert,
    Severity,
    parse_obstacles,
    utc_now,
)
from scoring_config import ROUTING_MODEL, ProximityConfig, RoutingModel, apply_piecewise

logger = logging.getLogger(__name__)

VERIFIED_CONFIDENCE_BONUS = 0.2
UNVOTED_CONFIDENCE = 0.5

# Unconfirmed reports still carry most of their weight: a blocking
# obstacle nobody has voted on yet must stay in the top urgency band.
CONFIDENCE_FLOOR_FACTOR = 0.7

_INACTIVE_STATUSES = (ObstacleStatus.RESOLVED, ObstacleStatus.FALSE_REPORT)


# =============================================================================
# Alert math
# =============================================================================

def calculate_confidence(obstacle: Obstacle) -> float:
    """Community confidence in [0, 1] from votes plus a verified bonus."""
    total = obstacle.total_votes
    if total == 0:
        confidence = UNVOTED_CONFIDENCE
    else:
        confidence = obstacle.upvotes / total
    if obstacle.verified:
        confidence += VERIFIED_CONFIDENCE_BONUS
    return min(1.0, confidence)


def calculate_urgency(severity: Severity, distance_m: float, confidence: float,
                      mobility_type: MobilityType, detection_radius_m: float,
                      model: RoutingModel = ROUTING_MODEL) -> float:
    """Urgency 0-100: (severity base + distance decay) x profile x confidence."""
    base = model.severity_urgency[severity]
    fraction = distance_m / detection_radius_m if detection_radius_m > 0 else 1.0
    proximity = apply_piecewise(model.urgency_distance_decay, fraction)
    multiplier = model.profiles[mobility_type].urgency_multiplier
    confidence_factor = CONFIDENCE_FLOOR_FACTOR + (1 - CONFIDENCE_FLOOR_FACTOR) * confidence
    return min(100.0, (base + proximity) * multiplier * confidence_factor)


def is_critical(alert: ProximityAlert,
                config: ProximityConfig = ROUTING_MODEL.proximity) -> bool:
    """Close, severe alerts that warrant an immediate detour offer."""
    return (
        alert.distance < config.critical_distance_m
        and alert.severity in (Severity.BLOCKING, Severity.HIGH)
    )


# =============================================================================
# Detector
# =============================================================================

class ProximityDetector:
    """Per-session detector.  Holds only its state and movement memo."""

    def __init__(self, store, config: Optional[ProximityConfig] = None,
                 model: RoutingModel = ROUTING_MODEL, clock=utc_now):
        self.store = store
        self.config = config or model.proximity
        self.model = model
        self._clock = clock
        self._lock = threading.Lock()
        self._state = DetectorState.IDLE
        self._last_location: Optional[Location] = None

    @property
    def state(self) -> DetectorState:
        return self._state

    def reset(self) -> None:
        """Forget the movement memo so the next tick evaluates from scratch."""
        with self._lock:
            self._last_location = None
            self._state = DetectorState.IDLE

    def update_config(self, **changes) -> None:
        self.config = replace(self.config, **changes)

    def _input_invalid(self, location: Optional[Location],
                       route_polyline: Sequence[Location]) -> bool:
        if location is None or route_polyline is None or len(route_polyline) < 2:
            return True
        if (location.accuracy is not None
                and location.accuracy > self.config.max_location_accuracy_m):
            logger.debug("[proximity] Discarding fix with accuracy %.0fm", location.accuracy)
            return True
        return False

    def detect_obstacles_ahead(self, location: Optional[Location],
                               route_polyline: Sequence[Location],
                               profile: MobilityProfile) -> List[ProximityAlert]:
        if self._input_invalid(location, route_polyline):
            with self._lock:
                self._state = DetectorState.IDLE
            return []

        with self._lock:
            self._state = DetectorState.DETECTING
            last = self._last_location
        if last is not None:
            moved = distance_between(last, location)
            if moved < self.config.minimum_movement_m:
                logger.debug("[proximity] Moved %.1fm, skipping tick", moved)
                return []

        radius_km = self.config.detection_radius_m / 1000.0
        try:
            records = self.store.get_obstacles_in_area(
                location.latitude, location.longitude, radius_km,
            )
        except Exception:
            logger.warning("[proximity] Obstacle fetch failed; no alerts this tick",
                           exc_info=True)
            return []

        with self._lock:
            self._last_location = location

        alerts = self._build_alerts(parse_obstacles(records), location,
                                    route_polyline, profile)
        alerts.sort(key=lambda a: a.urgency, reverse=True)
        alerts = alerts[:self.config.max_alerts]

        if alerts:
            logger.info(
                "[proximity] %d alert(s); top=%s urgency=%d distance=%dm",
                len(alerts), alerts[0].obstacle.type.value,
                alerts[0].urgency, alerts[0].distance,
            )
        return alerts

    def _build_alerts(self, obstacles: List[Obstacle], location: Location,
                      route_polyline: Sequence[Location],
                      profile: MobilityProfile) -> List[ProximityAlert]:
        now = self._clock()
        expire_days = self.model.consensus.auto_expire_days
        speed = self.model.profiles[profile.type].walking_speed_mps

        alerts: List[ProximityAlert] = []
        for obstacle in obstacles:
            if obstacle.status in _INACTIVE_STATUSES:
                continue
            if obstacle.is_expired(now, expire_days):
                continue

            off_route = distance_to_polyline_m(obstacle.location, route_polyline)
            if off_route > self.config.route_tolerance_m:
                continue

            distance = distance_between(location, obstacle.location)
            confidence = calculate_confidence(obstacle)
            urgency = calculate_urgency(
                obstacle.severity, distance, confidence, profile.type,
                self.config.detection_radius_m, self.model,
            )
            alerts.append(ProximityAlert(
                obstacle=obstacle,
                distance=int(distance + 0.5),
                time_to_encounter=int(distance / speed + 0.5),
                severity=obstacle.severity,
                confidence=round(confidence, 2),
                urgency=int(urgency + 0.5),
            ))
        return alerts
