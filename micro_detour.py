"""
Micro-detour search — short street-level bypasses around one obstacle.

Pipeline for create_micro_detour():
  1. Generate waypoint candidates at fixed offsets (shorter first) in the
     four cardinal directions around the obstacle, clipped to the
     profile's search radius.
  2. Pre-filter on estimated extra time/distance so hopeless candidates
     never cost a routing call.
  3. Evaluate survivors in generation order against the routing
     collaborator, through the evaluation cache, the in-flight map and
     the concurrency semaphore.
  4. Reject routes that go indoors/through private property, leave
     walking mode, or use a blacklisted maneuver.
  5. Return the FIRST candidate that passes the profile thresholds.  The
     globally best candidate is not searched for; routing calls are the
     expensive part.

Shared state (one set per engine instance, all lock-protected):
  - EvaluationCache: EvaluationKey -> WaypointRouteResult, TTL + size bound,
    oldest-evicted-first.
  - _inflight: EvaluationKey -> Future, so concurrent requests for the same
    key share one routing call.
  - _semaphore: caps concurrent outbound routing calls.

Quota errors from the routing collaborator end the candidate loop at
once; any other routing failure just skips that candidate.
"""

import logging
import math
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from collaborators import RoutingError, RoutingQuotaError
from geo_math import offset_point
from models import (
    DetourStats,
    Location,
    MicroDetour,
    MobilityProfile,
    Obstacle,
    ObstacleType,
    Route,
    SafetyRating,
)
from route_trace import TraceContext, clear_trace, get_trace, set_trace
from scoring_config import ROUTING_MODEL, DetourConfig, ProfileInfo, RoutingModel, obstacle_info

logger = logging.getLogger(__name__)

CARDINAL_BEARINGS: Tuple[Tuple[str, float], ...] = (
    ("north", 0.0),
    ("south", 180.0),
    ("east", 90.0),
    ("west", 270.0),
)

# Confidence adjustments on top of DetourConfig.base_confidence.
HIGH_SAFETY_BONUS = 0.1
LOW_SAFETY_PENALTY = 0.2
QUICK_DETOUR_S = 60
QUICK_DETOUR_BONUS = 0.1
SLOW_DETOUR_S = 180
SLOW_DETOUR_PENALTY = 0.1

# Distance at which a detour shares nothing with the original route.
SIMILARITY_SCALE_M = 1000.0


class EvaluationBusyError(Exception):
    """Raised when no evaluation slot frees up within the semaphore timeout."""

    pass


# =============================================================================
# Internal working types
# =============================================================================

def _quantize(location: Location, precision: int) -> Tuple[int, int]:
    scale = 10 ** precision
    return (
        math.floor(location.latitude * scale + 0.5),
        math.floor(location.longitude * scale + 0.5),
    )


@dataclass(frozen=True)
class EvaluationKey:
    """Cache key: coordinates quantized to a fixed number of decimals."""
    origin: Tuple[int, int]
    destination: Tuple[int, int]
    waypoints: Tuple[Tuple[int, int], ...]

    @classmethod
    def build(cls, origin: Location, destination: Location,
              waypoints: Sequence[Location], precision: int) -> "EvaluationKey":
        return cls(
            origin=_quantize(origin, precision),
            destination=_quantize(destination, precision),
            waypoints=tuple(_quantize(w, precision) for w in waypoints),
        )


@dataclass(frozen=True)
class DetourCandidate:
    waypoint: Location
    offset_m: float
    direction: str
    estimated_extra_time_s: int
    estimated_extra_distance_m: float
    safety_rating: SafetyRating
    reason: str


@dataclass(frozen=True)
class WaypointRouteResult:
    route: Route
    extra_time_s: float
    extra_distance_m: float
    is_safe: bool


class EvaluationCache:
    """TTL cache with a size bound; evicts the oldest insert first."""

    def __init__(self, ttl_s: float, max_entries: int,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[EvaluationKey, Tuple[float, WaypointRouteResult]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: EvaluationKey, record: bool = True) -> Optional[WaypointRouteResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry[0] >= self.ttl_s:
                del self._entries[key]
                entry = None
            if record:
                if entry is None:
                    self.misses += 1
                else:
                    self.hits += 1
            return entry[1] if entry is not None else None

    def put(self, key: EvaluationKey, result: WaypointRouteResult) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock(), result)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Pure helpers
# =============================================================================

def fallback_message(obstacle_type: ObstacleType) -> str:
    """Static advice shown when no micro-detour qualifies."""
    return obstacle_info(obstacle_type).fallback_message


def is_route_unsafe(route: Route, config: DetourConfig = ROUTING_MODEL.detour) -> bool:
    """True if any step goes indoors/private, leaves walking mode, or uses a blacklisted maneuver."""
    for step in route.steps:
        text = step.instructions.lower()
        if any(phrase in text for phrase in config.unsafe_phrases):
            return True
        if step.travel_mode and step.travel_mode.upper() != "WALKING":
            return True
        if step.maneuver and step.maneuver.lower() in config.blacklisted_maneuvers:
            return True
    return False


def _safety_rating(offset_m: float, config: DetourConfig) -> SafetyRating:
    if offset_m >= config.high_safety_offset_m:
        return SafetyRating.HIGH
    if offset_m >= config.medium_safety_offset_m:
        return SafetyRating.MEDIUM
    return SafetyRating.LOW


def detour_confidence(safety_rating: SafetyRating, extra_time_s: float,
                      config: DetourConfig = ROUTING_MODEL.detour) -> float:
    confidence = config.base_confidence
    if safety_rating == SafetyRating.HIGH:
        confidence += HIGH_SAFETY_BONUS
    elif safety_rating == SafetyRating.LOW:
        confidence -= LOW_SAFETY_PENALTY
    if extra_time_s <= QUICK_DETOUR_S:
        confidence += QUICK_DETOUR_BONUS
    elif extra_time_s > SLOW_DETOUR_S:
        confidence -= SLOW_DETOUR_PENALTY
    return round(max(0.0, min(1.0, confidence)), 2)


def route_similarity(extra_distance_m: float) -> float:
    return round(max(0.0, min(1.0, 1 - extra_distance_m / SIMILARITY_SCALE_M)), 2)


# =============================================================================
# Engine
# =============================================================================

class MicroDetourEngine:
    """Searches and safety-checks micro-detours.  Safe to share across threads."""

    def __init__(self, routing_client, config: Optional[DetourConfig] = None,
                 model: RoutingModel = ROUTING_MODEL,
                 clock: Callable[[], float] = time.monotonic):
        self.routing_client = routing_client
        self.config = config or model.detour
        self.model = model
        self._cache = EvaluationCache(self.config.cache_ttl_s,
                                      self.config.max_cache_entries, clock)
        self._semaphore = threading.BoundedSemaphore(self.config.max_concurrent_evaluations)
        self._inflight: Dict[EvaluationKey, Future] = {}
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------

    def find_detour_candidates(self, obstacle_location: Location,
                               search_radius_m: float,
                               profile: MobilityProfile) -> List[DetourCandidate]:
        """Waypoints around the obstacle, shorter offsets first."""
        speed = self.model.profiles[profile.type].walking_speed_mps
        candidates: List[DetourCandidate] = []
        for offset in self.config.offset_distances_m:
            if offset > search_radius_m:
                continue
            rating = _safety_rating(offset, self.config)
            for direction, bearing in CARDINAL_BEARINGS:
                lat, lng = offset_point(obstacle_location.latitude,
                                        obstacle_location.longitude, bearing, offset)
                candidates.append(DetourCandidate(
                    waypoint=Location(latitude=lat, longitude=lng),
                    offset_m=offset,
                    direction=direction,
                    estimated_extra_time_s=int(offset / speed + 0.5),
                    estimated_extra_distance_m=offset,
                    safety_rating=rating,
                    reason=f"{int(offset)}m {direction} detour",
                ))
        return candidates

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def create_micro_detour(self, location: Location, obstacle: Obstacle,
                            destination: Location, profile: MobilityProfile,
                            is_cancelled: Optional[Callable[[], bool]] = None,
                            ) -> Optional[MicroDetour]:
        """First qualifying bypass around *obstacle*, or None.

        *is_cancelled* is polled between evaluations; once it returns
        True the search stops and any result is discarded.
        """
        owns_trace = get_trace() is None
        if owns_trace:
            set_trace(TraceContext(trace_id=f"detour-{uuid.uuid4().hex[:8]}"))
        trace = get_trace()
        # A stage the caller already opened keeps owning these calls.
        opens_stage = not trace.current_stage
        if opens_stage:
            trace.start_stage("detour_search")
        error_class = ""
        try:
            return self._search(location, obstacle, destination, profile, is_cancelled)
        except Exception as e:
            error_class = type(e).__name__
            raise
        finally:
            if opens_stage:
                trace.end_stage(error_class)
            if owns_trace:
                trace.log_summary()
                clear_trace()

    def _search(self, location: Location, obstacle: Obstacle,
                destination: Location, profile: MobilityProfile,
                is_cancelled: Optional[Callable[[], bool]]) -> Optional[MicroDetour]:
        info = self.model.profiles[profile.type]
        candidates = self.find_detour_candidates(
            obstacle.location, info.detour_search_radius_m, profile,
        )
        viable = [
            c for c in candidates
            if c.estimated_extra_time_s <= info.max_extra_time_s
            and c.estimated_extra_distance_m <= info.max_extra_distance_m
        ]
        if not viable:
            logger.info("[detour] No viable candidates for %s (%s)",
                        obstacle.id, fallback_message(obstacle.type))
            return None

        logger.info("[detour] Evaluating %d of %d candidates around %s",
                    len(viable), len(candidates), obstacle.id)

        for candidate in viable:
            if is_cancelled is not None and is_cancelled():
                logger.info("[detour] Search for %s cancelled", obstacle.id)
                return None

            try:
                result = self._evaluate(location, destination, candidate)
            except RoutingQuotaError:
                logger.warning("[detour] Routing quota exhausted; abandoning search for %s",
                               obstacle.id)
                break
            except EvaluationBusyError:
                logger.info("[detour] No evaluation slot for %s, skipping", candidate.reason)
                continue
            except RoutingError as e:
                logger.warning("[detour] Routing failed for %s: %s", candidate.reason, e)
                continue

            if result is None:
                continue
            if not result.is_safe:
                logger.debug("[detour] Rejected unsafe route for %s", candidate.reason)
                continue
            if not self._should_show(candidate, result, info):
                continue

            if is_cancelled is not None and is_cancelled():
                return None
            detour = self._build_detour(candidate, result)
            logger.info("[detour] Accepted %s: +%ds +%dm confidence=%.2f",
                        detour.reason, detour.extra_time, detour.extra_distance,
                        detour.confidence)
            return detour

        logger.info("[detour] No qualifying detour for %s (%s)",
                    obstacle.id, fallback_message(obstacle.type))
        return None

    def _should_show(self, candidate: DetourCandidate, result: WaypointRouteResult,
                     info: ProfileInfo) -> bool:
        if result.extra_time_s > info.max_extra_time_s:
            return False
        if result.extra_distance_m > info.max_extra_distance_m:
            return False
        if (candidate.safety_rating == SafetyRating.LOW
                and result.extra_time_s > self.config.low_safety_max_extra_time_s):
            return False
        return True

    def _build_detour(self, candidate: DetourCandidate,
                      result: WaypointRouteResult) -> MicroDetour:
        return MicroDetour(
            route=result.route,
            extra_time=int(result.extra_time_s + 0.5),
            extra_distance=int(result.extra_distance_m + 0.5),
            safety_rating=candidate.safety_rating,
            confidence=detour_confidence(candidate.safety_rating,
                                         result.extra_time_s, self.config),
            reason=candidate.reason,
            route_similarity=route_similarity(result.extra_distance_m),
        )

    # ------------------------------------------------------------------
    # Evaluation: cache -> in-flight coalescing -> semaphore -> provider
    # ------------------------------------------------------------------

    def _evaluate(self, origin: Location, destination: Location,
                  candidate: DetourCandidate) -> Optional[WaypointRouteResult]:
        key = EvaluationKey.build(origin, destination, [candidate.waypoint],
                                  self.config.coord_precision)

        cached = self._cache.get(key)
        if cached is not None:
            trace = get_trace()
            if trace:
                trace.record_api_call(
                    service="detour_cache",
                    endpoint="waypoint_route",
                    elapsed_ms=0,
                    status_code=200,
                    provider_status="cache_hit",
                )
            return cached

        with self._inflight_lock:
            # Another thread may have finished between the miss and here.
            cached = self._cache.get(key, record=False)
            if cached is not None:
                return cached
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            return future.result()

        try:
            result = self._call_with_limit(origin, destination, candidate)
            if result is not None:
                self._cache.put(key, result)
            future.set_result(result)
            return result
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _call_with_limit(self, origin: Location, destination: Location,
                         candidate: DetourCandidate) -> Optional[WaypointRouteResult]:
        if not self._semaphore.acquire(timeout=self.config.semaphore_timeout_s):
            raise EvaluationBusyError(
                f"No evaluation slot within {self.config.semaphore_timeout_s}s"
            )
        try:
            return self._perform_evaluation(origin, destination, candidate)
        finally:
            self._semaphore.release()

    def _perform_evaluation(self, origin: Location, destination: Location,
                            candidate: DetourCandidate) -> Optional[WaypointRouteResult]:
        route = self.routing_client.get_route(origin, destination, [candidate.waypoint])
        if route is None:
            return None

        extra_time = route.extra_time_s
        extra_distance = route.extra_distance_m
        if extra_time is None or extra_distance is None:
            direct = self.routing_client.get_routes(origin, destination)
            if direct:
                extra_time = max(0.0, route.duration_s - direct[0].duration_s)
                extra_distance = max(0.0, route.distance_m - direct[0].distance_m)
            else:
                extra_time = float(candidate.estimated_extra_time_s)
                extra_distance = float(candidate.estimated_extra_distance_m)

        return WaypointRouteResult(
            route=route,
            extra_time_s=extra_time,
            extra_distance_m=extra_distance,
            is_safe=not is_route_unsafe(route, self.config),
        )

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def get_detour_stats(self) -> DetourStats:
        hits = self._cache.hits
        misses = self._cache.misses
        total = hits + misses
        with self._inflight_lock:
            inflight = len(self._inflight)
        return DetourStats(
            cache_size=len(self._cache),
            hits=hits,
            misses=misses,
            inflight=inflight,
            hit_rate=round(hits / total, 2) if total else 0.0,
        )

    def clear_cache(self) -> None:
        self._cache.clear()
