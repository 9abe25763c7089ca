"""
Route analysis — fastest vs. most accessible walking route.

Fetches alternative walking routes from the routing collaborator,
collects the reported obstacles along each one, grades each route with
accessibility_scorer.score() and recommends one of them.

Unlike the navigation-time engines this is a direct, on-demand request:
if the routing collaborator is unreachable or has no route at all there
is nothing to compare, so RoutingError propagates to the caller.
Obstacle-store failures still degrade softly (the route is scored with
whatever obstacle data could be fetched).
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

import accessibility_scorer
from collaborators import RoutingError
from geo_math import distance_to_polyline_m
from models import (
    ConfidenceLevel,
    Location,
    MobilityProfile,
    Obstacle,
    ObstacleStatus,
    Route,
    RouteComparison,
    RouteConfidence,
    ScoredRoute,
    Severity,
    parse_obstacles,
    utc_now,
)
from scoring_config import ROUTING_MODEL

logger = logging.getLogger(__name__)

# Store query radius around each sampled route point.
SAMPLE_RADIUS_KM = 0.3

# An accessible alternative is worth recommending at this many points better.
MIN_IMPROVEMENT = 15.0

# Traversability penalty at which an obstacle effectively blocks this rider.
BLOCKING_PENALTY = 50.0


# =============================================================================
# Obstacle collection
# =============================================================================

def sample_points(polyline: List[Location]) -> List[Location]:
    """Start, middle and end of a route."""
    if not polyline:
        return []
    if len(polyline) <= 3:
        return list(polyline)
    return [polyline[0], polyline[len(polyline) // 2], polyline[-1]]


def collect_route_obstacles(route: Route, store, now: datetime,
                            tolerance_m: Optional[float] = None) -> List[Obstacle]:
    """Live obstacles along *route*, de-duplicated by id."""
    if tolerance_m is None:
        tolerance_m = ROUTING_MODEL.proximity.route_tolerance_m
    expire_days = ROUTING_MODEL.consensus.auto_expire_days

    seen: Dict[str, Obstacle] = {}
    for point in sample_points(route.polyline):
        try:
            records = store.get_obstacles_in_area(
                point.latitude, point.longitude, SAMPLE_RADIUS_KM,
            )
        except Exception:
            logger.warning("Obstacle fetch failed near (%.5f, %.5f); scoring with partial data",
                           point.latitude, point.longitude, exc_info=True)
            continue
        for obstacle in parse_obstacles(records):
            if obstacle.id in seen:
                continue
            if obstacle.status in (ObstacleStatus.RESOLVED, ObstacleStatus.FALSE_REPORT):
                continue
            if obstacle.is_expired(now, expire_days):
                continue
            if distance_to_polyline_m(obstacle.location, route.polyline) > tolerance_m:
                continue
            seen[obstacle.id] = obstacle
    return list(seen.values())


# =============================================================================
# Confidence
# =============================================================================

def calculate_route_confidence(obstacles: List[Obstacle], now: datetime) -> RouteConfidence:
    """How much to trust the obstacle picture for a route (0-100)."""
    if not obstacles:
        return RouteConfidence(
            level=ConfidenceLevel.MEDIUM,
            score=70,
            obstacle_reports=0,
            verified_reports=0,
            data_freshness="none",
        )

    avg_age_days = sum((now - o.reported_at).days for o in obstacles) / len(obstacles)
    score = 50.0
    if avg_age_days <= 7:
        freshness = "fresh"
        score += 35
    elif avg_age_days <= 30:
        freshness = "recent"
        score += 20
    else:
        freshness = "stale"
        score += 5

    votes = sum(o.total_votes for o in obstacles)
    score += min(votes * 2, 25)

    verified = sum(1 for o in obstacles if o.verified)
    ratio = verified / len(obstacles)
    if ratio >= 0.7:
        score += 25
    elif ratio >= 0.3:
        score += 15
    else:
        score += 5

    score += min(len(obstacles) * 2 / 10.0, 15)
    score = min(100.0, score)

    if score >= 80:
        level = ConfidenceLevel.HIGH
    elif score >= 60:
        level = ConfidenceLevel.MEDIUM
    else:
        level = ConfidenceLevel.LOW

    return RouteConfidence(
        level=level,
        score=int(score + 0.5),
        obstacle_reports=len(obstacles),
        verified_reports=verified,
        data_freshness=freshness,
    )


# =============================================================================
# Comparison
# =============================================================================

def score_route(route: Route, profile: MobilityProfile, store,
                now: Optional[datetime] = None) -> ScoredRoute:
    now = now or utc_now()
    obstacles = collect_route_obstacles(route, store, now)
    return ScoredRoute(
        route=route,
        score=accessibility_scorer.score_obstacles(obstacles, profile),
        obstacles=obstacles,
        confidence=calculate_route_confidence(obstacles, now),
    )


def blocking_obstacles(scored: ScoredRoute, profile: MobilityProfile) -> List[Obstacle]:
    """Obstacles on the route this rider can't realistically pass."""
    return [
        o for o in scored.obstacles
        if o.severity == Severity.BLOCKING
        or accessibility_scorer.obstacle_traversability_penalty(o, profile) >= BLOCKING_PENALTY
    ]


def _recommend(fastest: ScoredRoute, accessible: ScoredRoute,
               profile: MobilityProfile, time_diff_s: int, improvement: float):
    minutes = int(time_diff_s / 60 + 0.5)
    blockers = blocking_obstacles(fastest, profile)
    if blockers and not blocking_obstacles(accessible, profile):
        names = " and ".join(sorted({o.type.value.replace("_", " ") for o in blockers})[:2])
        return "accessible", (
            f"Take the accessible route ({minutes} min longer): the fastest route has "
            f"{names} (Grade {accessible.score.grade})"
        )
    if improvement >= MIN_IMPROVEMENT:
        return "accessible", (
            f"Accessible route recommended ({minutes} min longer): Grade "
            f"{accessible.score.grade} vs {fastest.score.grade}"
        )
    return "fastest", (
        f"Fastest route is accessible enough (Grade {fastest.score.grade})"
    )


def analyze_routes(origin: Location, destination: Location, profile: MobilityProfile,
                   routing_client, store,
                   clock: Callable[[], datetime] = utc_now) -> RouteComparison:
    """Compare the fastest and the most accessible walking routes.

    Raises RoutingError when no route can be obtained.
    """
    routes = routing_client.get_routes(origin, destination, alternatives=True)
    if not routes:
        raise RoutingError("No walking route found between origin and destination")

    now = clock()
    scored = [score_route(r, profile, store, now) for r in routes]

    fastest = min(scored, key=lambda s: s.route.duration_s)
    accessible = max(scored, key=lambda s: (s.score.overall, -s.route.duration_s))

    if accessible is fastest:
        logger.info("Route analysis: fastest route is also most accessible (grade %s)",
                    fastest.score.grade)
        return RouteComparison(
            fastest=fastest,
            accessible=accessible,
            time_difference_s=0,
            distance_difference_m=0,
            accessibility_improvement=0.0,
            recommendation="fastest",
            message=f"Fastest route is also the most accessible (Grade {fastest.score.grade})",
            same_route=True,
        )

    time_diff = int(accessible.route.duration_s - fastest.route.duration_s + 0.5)
    distance_diff = int(accessible.route.distance_m - fastest.route.distance_m + 0.5)
    improvement = round(accessible.score.overall - fastest.score.overall, 1)
    recommendation, message = _recommend(fastest, accessible, profile, time_diff, improvement)

    logger.info(
        "Route analysis: %d routes, fastest=%s accessible=%s +%ds improvement=%.1f -> %s",
        len(scored), fastest.score.grade, accessible.score.grade,
        time_diff, improvement, recommendation,
    )
    return RouteComparison(
        fastest=fastest,
        accessible=accessible,
        time_difference_s=time_diff,
        distance_difference_m=distance_diff,
        accessibility_improvement=improvement,
        recommendation=recommendation,
        message=message,
    )
