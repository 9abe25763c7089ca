"""
Routing model configuration.

Owns every tunable that affects scores, alerts, detours and validation
prompts. Per-type tables are keyed by the closed enums in models.py and
are checked for exhaustiveness at import time, so adding an ObstacleType
or MobilityType without a row here fails loudly on startup.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Tuple

from models import MobilityType, ObstacleType, Severity


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class PiecewiseKnot:
    """A single (x, y) breakpoint on a piecewise linear curve."""
    x: float
    y: float


@dataclass(frozen=True)
class ScoreBand:
    """Maps a minimum score threshold to a letter grade."""
    threshold: int
    grade: str
    label: str = ""


@dataclass(frozen=True)
class AHPWeights:
    """Fixed AHP criterion weights. Must sum to 1.0."""
    traversability: float = 0.70
    safety: float = 0.20
    comfort: float = 0.10


@dataclass(frozen=True)
class ObstacleTypeInfo:
    """Everything the core needs to know about one obstacle type."""
    traversability_penalty: float
    safety_penalty: float
    comfort_penalty: float
    profile_multipliers: Dict[MobilityType, float]
    prompt_label: str       # fills "Is there still {label} here?"
    fallback_message: str   # shown when no micro-detour qualifies


@dataclass(frozen=True)
class ProfileInfo:
    """Per-mobility-type physical parameters and detour tolerances."""
    walking_speed_mps: float
    required_width_m: float
    urgency_multiplier: float
    detour_search_radius_m: float
    max_extra_time_s: float
    max_extra_distance_m: float


@dataclass(frozen=True)
class ProximityConfig:
    detection_radius_m: float = 100.0
    route_tolerance_m: float = 15.0
    update_interval_s: float = 5.0
    minimum_movement_m: float = 10.0
    max_alerts: int = 2
    max_location_accuracy_m: float = 150.0
    critical_distance_m: float = 50.0


@dataclass(frozen=True)
class ConsensusConfig:
    proximity_radius_m: float = 50.0
    community_vote_threshold: int = 8
    max_prompts_per_session: int = 3
    cooldown: timedelta = timedelta(days=1)
    auto_expire_days: int = 30
    prompt_interval_s: float = 10.0
    max_location_accuracy_m: float = 150.0


@dataclass(frozen=True)
class DetourConfig:
    # Evaluated in this order; shorter offsets first.
    offset_distances_m: Tuple[float, ...] = (50.0, 70.0, 100.0)
    coord_precision: int = 4
    cache_ttl_s: float = 300.0
    max_cache_entries: int = 500
    max_concurrent_evaluations: int = 3
    semaphore_timeout_s: float = 5.0
    high_safety_offset_m: float = 70.0
    medium_safety_offset_m: float = 50.0
    base_confidence: float = 0.8
    low_safety_max_extra_time_s: float = 120.0
    unsafe_phrases: Tuple[str, ...] = (
        "enter the",
        "shopping mall",
        "private property",
        "through the building",
        "inside the",
        "pedestrian overpass",
        "underground passage",
    )
    blacklisted_maneuvers: Tuple[str, ...] = (
        "ferry",
        "ferry-train",
        "ramp-left",
        "ramp-right",
    )


@dataclass(frozen=True)
class RoutingModel:
    version: str
    weights: AHPWeights
    grade_bands: Tuple[ScoreBand, ...]
    severity_multipliers: Dict[Severity, float]
    severity_urgency: Dict[Severity, float]
    urgency_distance_decay: Tuple[PiecewiseKnot, ...]
    obstacle_types: Dict[ObstacleType, ObstacleTypeInfo]
    profiles: Dict[MobilityType, ProfileInfo]
    proximity: ProximityConfig = field(default_factory=ProximityConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    detour: DetourConfig = field(default_factory=DetourConfig)


# =============================================================================
# Curve helpers
# =============================================================================

def apply_piecewise(knots: Tuple[PiecewiseKnot, ...], x: float) -> float:
    """Evaluate a piecewise linear curve at *x*.

    Linearly interpolates between adjacent knots.  Values outside the
    knot range are clamped to the first / last y value.
    """
    if not knots:
        raise ValueError("knots must not be empty")

    if x <= knots[0].x:
        return knots[0].y
    if x >= knots[-1].x:
        return knots[-1].y

    for i in range(1, len(knots)):
        if x <= knots[i].x:
            k0 = knots[i - 1]
            k1 = knots[i]
            dx = k1.x - k0.x
            if dx == 0:
                return k1.y
            t = (x - k0.x) / dx
            return k0.y + t * (k1.y - k0.y)

    return knots[-1].y


# =============================================================================
# Tables
# =============================================================================

def _multipliers(wheelchair, walker, crutches, cane, none=1.0):
    return {
        MobilityType.WHEELCHAIR: wheelchair,
        MobilityType.WALKER: walker,
        MobilityType.CRUTCHES: crutches,
        MobilityType.CANE: cane,
        MobilityType.NONE: none,
    }


OBSTACLE_TYPES: Dict[ObstacleType, ObstacleTypeInfo] = {
    ObstacleType.VENDOR_BLOCKING: ObstacleTypeInfo(
        traversability_penalty=15, safety_penalty=5, comfort_penalty=10,
        profile_multipliers=_multipliers(1.4, 1.3, 1.2, 1.1),
        prompt_label="a vendor blocking the sidewalk",
        fallback_message="Vendor blocking path - please navigate around manually",
    ),
    ObstacleType.PARKED_VEHICLES: ObstacleTypeInfo(
        traversability_penalty=20, safety_penalty=15, comfort_penalty=5,
        profile_multipliers=_multipliers(1.5, 1.3, 1.2, 1.1),
        prompt_label="vehicles parked on the sidewalk",
        fallback_message="Vehicle blocking sidewalk - use alternate route or roadside",
    ),
    # Able-bodied riders can climb a few steps; mobility aids cannot.
    ObstacleType.STAIRS_NO_RAMP: ObstacleTypeInfo(
        traversability_penalty=40, safety_penalty=10, comfort_penalty=10,
        profile_multipliers=_multipliers(2.0, 1.5, 1.8, 1.0, none=0.6),
        prompt_label="stairs without a ramp",
        fallback_message="Steps without ramp access - find alternate entrance or route",
    ),
    ObstacleType.NARROW_PASSAGE: ObstacleTypeInfo(
        traversability_penalty=25, safety_penalty=8, comfort_penalty=10,
        profile_multipliers=_multipliers(1.8, 1.5, 1.3, 1.1),
        prompt_label="a narrow passage",
        fallback_message="Passage too narrow - find wider alternate path",
    ),
    ObstacleType.BROKEN_INFRASTRUCTURE: ObstacleTypeInfo(
        traversability_penalty=20, safety_penalty=20, comfort_penalty=15,
        profile_multipliers=_multipliers(1.6, 1.4, 1.5, 1.3),
        prompt_label="broken pavement",
        fallback_message="Damaged pavement - proceed carefully or find alternate path",
    ),
    ObstacleType.FLOODING: ObstacleTypeInfo(
        traversability_penalty=30, safety_penalty=25, comfort_penalty=20,
        profile_multipliers=_multipliers(1.5, 1.4, 1.4, 1.2),
        prompt_label="flooding on the path",
        fallback_message="Flooding detected - avoid area and use alternate route",
    ),
    ObstacleType.CONSTRUCTION: ObstacleTypeInfo(
        traversability_penalty=35, safety_penalty=30, comfort_penalty=15,
        profile_multipliers=_multipliers(1.5, 1.3, 1.3, 1.2),
        prompt_label="construction blocking the path",
        fallback_message="Construction zone - follow posted detour signs",
    ),
    ObstacleType.ELECTRICAL_POST: ObstacleTypeInfo(
        traversability_penalty=15, safety_penalty=5, comfort_penalty=5,
        profile_multipliers=_multipliers(1.3, 1.2, 1.1, 1.1),
        prompt_label="an electrical post in the way",
        fallback_message="Utility pole blocking path - navigate around carefully",
    ),
    ObstacleType.DEBRIS: ObstacleTypeInfo(
        traversability_penalty=10, safety_penalty=8, comfort_penalty=5,
        profile_multipliers=_multipliers(1.3, 1.2, 1.2, 1.1),
        prompt_label="debris or trash",
        fallback_message="Debris on path - navigate around carefully",
    ),
    ObstacleType.NO_SIDEWALK: ObstacleTypeInfo(
        traversability_penalty=40, safety_penalty=35, comfort_penalty=15,
        profile_multipliers=_multipliers(1.5, 1.3, 1.3, 1.2),
        prompt_label="a missing sidewalk",
        fallback_message="No sidewalk available - use alternate route",
    ),
    ObstacleType.STEEP_SLOPE: ObstacleTypeInfo(
        traversability_penalty=30, safety_penalty=15, comfort_penalty=10,
        profile_multipliers=_multipliers(1.8, 1.5, 1.4, 1.2),
        prompt_label="a steep slope",
        fallback_message="Steep incline ahead - consider alternate route",
    ),
    ObstacleType.OTHER: ObstacleTypeInfo(
        traversability_penalty=10, safety_penalty=8, comfort_penalty=5,
        profile_multipliers=_multipliers(1.1, 1.0, 1.0, 1.0),
        prompt_label="an obstacle",
        fallback_message="Obstacle detected - navigate around carefully",
    ),
}

PROFILES: Dict[MobilityType, ProfileInfo] = {
    MobilityType.WHEELCHAIR: ProfileInfo(
        walking_speed_mps=1.2, required_width_m=0.9, urgency_multiplier=1.3,
        detour_search_radius_m=80, max_extra_time_s=180, max_extra_distance_m=300,
    ),
    MobilityType.WALKER: ProfileInfo(
        walking_speed_mps=1.0, required_width_m=0.7, urgency_multiplier=1.2,
        detour_search_radius_m=100, max_extra_time_s=240, max_extra_distance_m=400,
    ),
    MobilityType.CRUTCHES: ProfileInfo(
        walking_speed_mps=1.1, required_width_m=0.6, urgency_multiplier=1.2,
        detour_search_radius_m=90, max_extra_time_s=180, max_extra_distance_m=300,
    ),
    MobilityType.CANE: ProfileInfo(
        walking_speed_mps=1.3, required_width_m=0.5, urgency_multiplier=1.0,
        detour_search_radius_m=120, max_extra_time_s=300, max_extra_distance_m=500,
    ),
    MobilityType.NONE: ProfileInfo(
        walking_speed_mps=1.4, required_width_m=0.5, urgency_multiplier=1.0,
        detour_search_radius_m=150, max_extra_time_s=600, max_extra_distance_m=800,
    ),
}

GRADE_BANDS: Tuple[ScoreBand, ...] = (
    ScoreBand(85, "A", "Highly accessible"),
    ScoreBand(70, "B", "Accessible"),
    ScoreBand(55, "C", "Moderately accessible"),
    ScoreBand(40, "D", "Difficult"),
    ScoreBand(0, "F", "Not accessible"),
)


# =============================================================================
# Model instance
# =============================================================================

ROUTING_MODEL = RoutingModel(
    version="1.0.0",
    weights=AHPWeights(),
    grade_bands=GRADE_BANDS,
    severity_multipliers={
        Severity.LOW: 0.5,
        Severity.MEDIUM: 1.0,
        Severity.HIGH: 1.5,
        Severity.BLOCKING: 2.5,
    },
    severity_urgency={
        Severity.LOW: 10,
        Severity.MEDIUM: 20,
        Severity.HIGH: 35,
        Severity.BLOCKING: 50,
    },
    # x is distance as a fraction of the detection radius.
    urgency_distance_decay=(
        PiecewiseKnot(0.0, 30.0),
        PiecewiseKnot(1.0, 0.0),
    ),
    obstacle_types=OBSTACLE_TYPES,
    profiles=PROFILES,
)


def grade_for(score: float, bands: Tuple[ScoreBand, ...] = GRADE_BANDS) -> ScoreBand:
    """Return the first band whose threshold the score meets."""
    for band in bands:
        if score >= band.threshold:
            return band
    return bands[-1]


def profile_info(mobility_type: MobilityType) -> ProfileInfo:
    return ROUTING_MODEL.profiles[MobilityType(mobility_type)]


def obstacle_info(obstacle_type: ObstacleType) -> ObstacleTypeInfo:
    return ROUTING_MODEL.obstacle_types[ObstacleType(obstacle_type)]


# =============================================================================
# Import-time validation (ValueError, not assert, so validation is never
# stripped by python -O)
# =============================================================================

_w = ROUTING_MODEL.weights
_wsum = _w.traversability + _w.safety + _w.comfort
if abs(_wsum - 1.0) >= 0.001:
    raise ValueError(f"AHP weights sum to {_wsum}, expected 1.0")

_missing_types = set(ObstacleType) - set(OBSTACLE_TYPES)
if _missing_types:
    raise ValueError(f"No ObstacleTypeInfo for {sorted(t.value for t in _missing_types)}")

_missing_profiles = set(MobilityType) - set(PROFILES)
if _missing_profiles:
    raise ValueError(f"No ProfileInfo for {sorted(p.value for p in _missing_profiles)}")

for _t, _info in OBSTACLE_TYPES.items():
    if set(_info.profile_multipliers) != set(MobilityType):
        raise ValueError(f"{_t.value}: profile multipliers must cover every MobilityType")

for _s in Severity:
    if _s not in ROUTING_MODEL.severity_multipliers or _s not in ROUTING_MODEL.severity_urgency:
        raise ValueError(f"Severity {_s.value!r} missing from severity tables")

_thresholds = [b.threshold for b in GRADE_BANDS]
if _thresholds != sorted(_thresholds, reverse=True):
    raise ValueError("GRADE_BANDS must be ordered by descending threshold")

if list(ROUTING_MODEL.detour.offset_distances_m) != sorted(ROUTING_MODEL.detour.offset_distances_m):
    raise ValueError("Detour offsets must be ascending (shorter offsets are evaluated first)")
