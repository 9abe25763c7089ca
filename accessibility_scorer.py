"""
Accessibility Scorer — AHP grade for a sidewalk snapshot and rider profile.

Combines three criteria with fixed Analytic Hierarchy Process weights
(see scoring_config.AHPWeights):

  - Traversability: can this rider physically get through?  Obstacles,
    width shortfall, surface condition, slope over the rider's limit.
  - Safety: traffic exposure, lighting, hazard obstacles.
  - Comfort: shade preference, surface roughness, handrails.

A signed user-specific adjustment (bounded to +/-MAX_USER_ADJUSTMENT)
captures profile constraints the criteria don't see directly, e.g. an
avoid_stairs rider facing stairs with no ramp.

Determinism: no randomness and no wall-clock reads.  Time-patterned
obstacles (a morning-only vendor) are judged against
snapshot.observed_at; when that is None they are treated as active.
All outputs are rounded half-up to one decimal so repeated calls are
bit-identical and routes compare cleanly.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, Optional

from models import (
    AccessibilityScore,
    LightingLevel,
    MobilityProfile,
    MobilityType,
    Obstacle,
    ObstacleType,
    ShadeLevel,
    SidewalkSnapshot,
    Severity,
    SurfaceCondition,
    TimePattern,
    TrafficLevel,
)
from scoring_config import ROUTING_MODEL, RoutingModel, grade_for

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Penalty per meter of width shortfall, and its cap.
WIDTH_PENALTY_PER_M = 20.0
MAX_WIDTH_PENALTY = 40.0

# (wheelchair-class penalty, everyone else)
SURFACE_TRAVERSABILITY_PENALTY = {
    SurfaceCondition.BROKEN: (35.0, 25.0),
    SurfaceCondition.ROUGH: (15.0, 10.0),
    SurfaceCondition.SMOOTH: (0.0, 0.0),
}
SURFACE_COMFORT_PENALTY = {
    SurfaceCondition.BROKEN: 30.0,
    SurfaceCondition.ROUGH: 15.0,
    SurfaceCondition.SMOOTH: 0.0,
}

# Per percent of grade over the rider's max_ramp_slope.
SLOPE_PENALTY_PER_PCT = {
    MobilityType.WHEELCHAIR: 8.0,
    MobilityType.WALKER: 6.0,
    MobilityType.CRUTCHES: 4.0,
    MobilityType.CANE: 3.0,
    MobilityType.NONE: 1.0,
}
MAX_SLOPE_PENALTY = 50.0

TRAFFIC_SAFETY_PENALTY = {
    TrafficLevel.HIGH: 30.0,
    TrafficLevel.MEDIUM: 15.0,
    TrafficLevel.LOW: 5.0,
}
LIGHTING_SAFETY_PENALTY = {
    LightingLevel.NONE: 25.0,
    LightingLevel.POOR: 10.0,
    LightingLevel.GOOD: 0.0,
}
# Only applied when the rider prefers shade.
SHADE_COMFORT_PENALTY = {
    ShadeLevel.NONE: 40.0,
    ShadeLevel.PARTIAL: 10.0,
    ShadeLevel.COVERED: 0.0,
}

BLOCKING_SAFETY_MULTIPLIER = 1.5
CROWD_AVOIDANCE_MULTIPLIER = 1.5
ACTIVE_TIME_PATTERN_MULTIPLIER = 1.2
HANDRAIL_COMFORT_BONUS = 10.0

MAX_USER_ADJUSTMENT = 15.0
SHORT_RANGE_WALK_M = 500.0

_WHEELED = (MobilityType.WHEELCHAIR, MobilityType.WALKER)


# =============================================================================
# Helpers
# =============================================================================

def _round1(value: float) -> float:
    # floor(x + 0.5) rather than round() to avoid banker's rounding.  The
    # inner round() strips float noise so 81.25 stays a tie, not 81.2499...
    return math.floor(round(value * 10, 6) + 0.5) / 10


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def is_time_pattern_active(pattern: Optional[TimePattern],
                           at: Optional[datetime]) -> bool:
    """Whether an obstacle with *pattern* is present at *at*."""
    if pattern is None or pattern == TimePattern.PERMANENT or at is None:
        return True
    if pattern == TimePattern.WEEKEND:
        return at.weekday() >= 5
    hour = at.hour
    if pattern == TimePattern.MORNING:
        return 6 <= hour < 12
    if pattern == TimePattern.AFTERNOON:
        return 12 <= hour < 18
    if pattern == TimePattern.EVENING:
        return 18 <= hour < 22
    return True


def _time_multiplier(obstacle: Obstacle, at: Optional[datetime]) -> float:
    if obstacle.time_pattern in (None, TimePattern.PERMANENT):
        return 1.0
    if is_time_pattern_active(obstacle.time_pattern, at):
        return ACTIVE_TIME_PATTERN_MULTIPLIER
    return 1.0


def obstacle_traversability_penalty(obstacle: Obstacle, profile: MobilityProfile,
                                    at: Optional[datetime] = None,
                                    model: RoutingModel = ROUTING_MODEL) -> float:
    info = model.obstacle_types[obstacle.type]
    penalty = (
        info.traversability_penalty
        * model.severity_multipliers[obstacle.severity]
        * info.profile_multipliers[profile.type]
    )
    if profile.avoid_crowds and obstacle.type == ObstacleType.VENDOR_BLOCKING:
        penalty *= CROWD_AVOIDANCE_MULTIPLIER
    return penalty * _time_multiplier(obstacle, at)


# =============================================================================
# Criteria
# =============================================================================

def _score_traversability(snapshot: SidewalkSnapshot, profile: MobilityProfile,
                          model: RoutingModel) -> float:
    score = 100.0
    for obstacle in snapshot.obstacles:
        score -= obstacle_traversability_penalty(
            obstacle, profile, snapshot.observed_at, model,
        )

    required_width = model.profiles[profile.type].required_width_m
    if snapshot.estimated_width_m < required_width:
        shortfall = required_width - snapshot.estimated_width_m
        score -= min(MAX_WIDTH_PENALTY, shortfall * WIDTH_PENALTY_PER_M)

    wheeled_penalty, other_penalty = SURFACE_TRAVERSABILITY_PENALTY[snapshot.surface]
    score -= wheeled_penalty if profile.type in _WHEELED else other_penalty

    excess_slope = snapshot.slope_pct - profile.max_ramp_slope
    if excess_slope > 0:
        score -= min(MAX_SLOPE_PENALTY,
                     excess_slope * SLOPE_PENALTY_PER_PCT[profile.type])

    return _clamp(score)


def _score_safety(snapshot: SidewalkSnapshot, model: RoutingModel) -> float:
    score = 100.0
    score -= TRAFFIC_SAFETY_PENALTY[snapshot.traffic]
    score -= LIGHTING_SAFETY_PENALTY[snapshot.lighting]

    for obstacle in snapshot.obstacles:
        penalty = model.obstacle_types[obstacle.type].safety_penalty
        if obstacle.severity == Severity.BLOCKING:
            penalty *= BLOCKING_SAFETY_MULTIPLIER
        score -= penalty * _time_multiplier(obstacle, snapshot.observed_at)

    return _clamp(score)


def _score_comfort(snapshot: SidewalkSnapshot, profile: MobilityProfile,
                   model: RoutingModel) -> float:
    score = 100.0
    if profile.prefer_shade:
        score -= SHADE_COMFORT_PENALTY[snapshot.shade]
    score -= SURFACE_COMFORT_PENALTY[snapshot.surface]

    if snapshot.has_handrails and profile.type in (MobilityType.WALKER, MobilityType.CANE):
        score += HANDRAIL_COMFORT_BONUS

    for obstacle in snapshot.obstacles:
        score -= (
            model.obstacle_types[obstacle.type].comfort_penalty
            * model.severity_multipliers[obstacle.severity]
        )

    return _clamp(score)


def _user_specific_adjustment(snapshot: SidewalkSnapshot,
                              profile: MobilityProfile) -> float:
    adjustment = 0.0

    has_stairs = any(o.type == ObstacleType.STAIRS_NO_RAMP for o in snapshot.obstacles)
    if profile.avoid_stairs and has_stairs and not snapshot.has_ramp:
        adjustment -= 10.0

    if (profile.max_walking_distance is not None
            and profile.max_walking_distance < SHORT_RANGE_WALK_M
            and len(snapshot.obstacles) > 2):
        adjustment -= 5.0

    if profile.prefer_shade and snapshot.shade == ShadeLevel.COVERED:
        adjustment += 3.0

    if profile.type == MobilityType.WHEELCHAIR:
        if snapshot.has_ramp:
            adjustment += 5.0
        if snapshot.has_handrails:
            adjustment += 3.0

    return _clamp(adjustment, -MAX_USER_ADJUSTMENT, MAX_USER_ADJUSTMENT)


# =============================================================================
# Main entry points
# =============================================================================

def score(snapshot: SidewalkSnapshot, profile: MobilityProfile,
          model: RoutingModel = ROUTING_MODEL) -> AccessibilityScore:
    """Score a sidewalk snapshot for one rider profile.

    Pure function of its inputs; identical inputs always give identical
    output.
    """
    traversability = _round1(_score_traversability(snapshot, profile, model))
    safety = _round1(_score_safety(snapshot, model))
    comfort = _round1(_score_comfort(snapshot, profile, model))
    adjustment = _round1(_user_specific_adjustment(snapshot, profile))

    w = model.weights
    weighted = (
        traversability * w.traversability
        + safety * w.safety
        + comfort * w.comfort
    )
    overall = _round1(_clamp(weighted + adjustment))
    band = grade_for(overall, model.grade_bands)

    logger.debug(
        "Accessibility score: profile=%s obstacles=%d T=%.1f S=%.1f C=%.1f "
        "adj=%+.1f overall=%.1f grade=%s",
        profile.type.value, len(snapshot.obstacles), traversability, safety,
        comfort, adjustment, overall, band.grade,
    )

    return AccessibilityScore(
        traversability=traversability,
        safety=safety,
        comfort=comfort,
        overall=overall,
        grade=band.grade,
        user_specific_adjustment=adjustment,
    )


def score_obstacles(obstacles: Iterable[Obstacle], profile: MobilityProfile,
                    observed_at: Optional[datetime] = None) -> AccessibilityScore:
    """Score default sidewalk conditions around a list of obstacles.

    Used when only obstacle reports are known for a route, not surveyed
    conditions.
    """
    snapshot = SidewalkSnapshot(obstacles=list(obstacles), observed_at=observed_at)
    return score(snapshot, profile)
