"""
Domain types for the accessible-route core.

Enums are closed: every ObstacleType and MobilityType must have a row in
the per-type tables in scoring_config.py (checked at import time there).

Raw obstacle records arrive from an external store as loosely-shaped
dicts. Obstacle.from_record() is the single parsing point; it raises
ValueError for anything it cannot trust, and parse_obstacles() turns
those errors into per-record warnings so one bad report never sinks a
batch.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Enumerations
# =============================================================================

class MobilityType(str, Enum):
    WHEELCHAIR = "wheelchair"
    WALKER = "walker"
    CRUTCHES = "crutches"
    CANE = "cane"
    NONE = "none"


class ObstacleType(str, Enum):
    VENDOR_BLOCKING = "vendor_blocking"
    PARKED_VEHICLES = "parked_vehicles"
    STAIRS_NO_RAMP = "stairs_no_ramp"
    NARROW_PASSAGE = "narrow_passage"
    BROKEN_INFRASTRUCTURE = "broken_infrastructure"
    FLOODING = "flooding"
    CONSTRUCTION = "construction"
    ELECTRICAL_POST = "electrical_post"
    DEBRIS = "debris"
    NO_SIDEWALK = "no_sidewalk"
    STEEP_SLOPE = "steep_slope"
    OTHER = "other"


# Older reports used a different key for broken pavement.
_OBSTACLE_TYPE_ALIASES = {
    "broken_pavement": ObstacleType.BROKEN_INFRASTRUCTURE,
}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    BLOCKING = "blocking"


class ObstacleStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    RESOLVED = "resolved"
    FALSE_REPORT = "false_report"


class TimePattern(str, Enum):
    PERMANENT = "permanent"
    MORNING = "morning"        # 06:00-12:00
    AFTERNOON = "afternoon"    # 12:00-18:00
    EVENING = "evening"        # 18:00-22:00
    WEEKEND = "weekend"


class ValidationTier(str, Enum):
    SINGLE_REPORT = "single_report"
    COMMUNITY_VERIFIED = "community_verified"
    ADMIN_RESOLVED = "admin_resolved"


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SafetyRating(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ValidationResponse(str, Enum):
    STILL_THERE = "still_there"
    CLEARED = "cleared"
    SKIP = "skip"


class SurfaceCondition(str, Enum):
    SMOOTH = "smooth"
    ROUGH = "rough"
    BROKEN = "broken"


class LightingLevel(str, Enum):
    GOOD = "good"
    POOR = "poor"
    NONE = "none"


class ShadeLevel(str, Enum):
    COVERED = "covered"
    PARTIAL = "partial"
    NONE = "none"


class TrafficLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DetectorState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"


# =============================================================================
# Parsing helpers
# =============================================================================

def _first(record: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def _coerce_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got bool")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(result):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return result


def _vote_count(record: Dict[str, Any], key: str) -> int:
    return max(0, int(_coerce_float(_first(record, key, default=0), key)))


def parse_timestamp(value: Any) -> datetime:
    """Parse a datetime, ISO-8601 string, or epoch milliseconds into aware UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Unparseable timestamp {value!r}")
    else:
        raise ValueError(f"Unparseable timestamp {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Core dataclasses
# =============================================================================

@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None  # meters, 68% radius as reported by GPS

    @classmethod
    def parse(cls, value: Any) -> "Location":
        """Build a Location from a Location, dict, or (lat, lng) pair.

        Raises ValueError for missing, non-numeric, non-finite or
        out-of-range coordinates.
        """
        if isinstance(value, Location):
            lat, lng, acc = value.latitude, value.longitude, value.accuracy
        elif isinstance(value, dict):
            lat = _first(value, "latitude", "lat")
            lng = _first(value, "longitude", "lng", "lon")
            acc = value.get("accuracy")
            if lat is None or lng is None:
                raise ValueError(f"Location is missing coordinates: {value!r}")
        elif isinstance(value, (tuple, list)) and len(value) == 2:
            lat, lng = value
            acc = None
        else:
            raise ValueError(f"Unrecognized location {value!r}")

        lat = _coerce_float(lat, "latitude")
        lng = _coerce_float(lng, "longitude")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"latitude out of range: {lat}")
        if not -180.0 <= lng <= 180.0:
            raise ValueError(f"longitude out of range: {lng}")
        if acc is not None:
            acc = _coerce_float(acc, "accuracy")
        return cls(latitude=lat, longitude=lng, accuracy=acc)

    def as_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class MobilityProfile:
    """Rider capabilities. Owned by an external profile store; read-only here."""
    type: MobilityType = MobilityType.NONE
    max_ramp_slope: float = 8.33    # percent grade (ADA 1:12)
    avoid_stairs: bool = False
    avoid_crowds: bool = False
    prefer_shade: bool = False
    max_walking_distance: Optional[float] = None  # meters

    @classmethod
    def for_type(cls, mobility_type: MobilityType, **overrides) -> "MobilityProfile":
        mobility_type = MobilityType(mobility_type)
        defaults: Dict[str, Any] = {"type": mobility_type}
        if mobility_type in (MobilityType.WHEELCHAIR, MobilityType.WALKER):
            defaults["avoid_stairs"] = True
        defaults.update(overrides)
        return cls(**defaults)


@dataclass(frozen=True)
class Obstacle:
    id: str
    location: Location
    type: ObstacleType
    severity: Severity
    reported_at: datetime
    description: str = ""
    reported_by: str = ""
    upvotes: int = 0
    downvotes: int = 0
    status: ObstacleStatus = ObstacleStatus.PENDING
    verified: bool = False
    last_verified_at: Optional[datetime] = None
    time_pattern: Optional[TimePattern] = None

    def __post_init__(self):
        # Directly built instances may carry naive datetimes; store aware UTC.
        object.__setattr__(self, "reported_at", parse_timestamp(self.reported_at))
        if self.last_verified_at is not None:
            object.__setattr__(self, "last_verified_at",
                               parse_timestamp(self.last_verified_at))

    @property
    def total_votes(self) -> int:
        return self.upvotes + self.downvotes

    def expires_at(self, expire_days: int) -> datetime:
        return self.reported_at + timedelta(days=expire_days)

    def is_expired(self, now: datetime, expire_days: int) -> bool:
        return now >= self.expires_at(expire_days)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Obstacle":
        """Parse a raw obstacle-store record.

        Accepts camelCase or snake_case keys. Raises ValueError when the
        record has no id, a malformed location, or an unknown type or
        severity. Missing vote counts and status fall back to defaults.
        """
        if not isinstance(record, dict):
            raise ValueError(f"Obstacle record must be a dict, got {type(record).__name__}")

        obstacle_id = _first(record, "id", "obstacle_id", "obstacleId")
        if obstacle_id in (None, ""):
            raise ValueError("Obstacle record has no id")

        location = Location.parse(_first(record, "location", default=record))

        raw_type = str(_first(record, "type", default=""))
        if raw_type in _OBSTACLE_TYPE_ALIASES:
            obstacle_type = _OBSTACLE_TYPE_ALIASES[raw_type]
        else:
            try:
                obstacle_type = ObstacleType(raw_type)
            except ValueError:
                raise ValueError(f"Unknown obstacle type {raw_type!r}")

        raw_severity = _first(record, "severity", default="medium")
        try:
            severity = Severity(raw_severity)
        except ValueError:
            raise ValueError(f"Unknown severity {raw_severity!r}")

        raw_status = _first(record, "status", default=ObstacleStatus.PENDING.value)
        try:
            status = ObstacleStatus(raw_status)
        except ValueError:
            logger.warning("Obstacle %s has unknown status %r, treating as pending",
                           obstacle_id, raw_status)
            status = ObstacleStatus.PENDING

        raw_pattern = _first(record, "time_pattern", "timePattern")
        time_pattern = None
        if raw_pattern is not None:
            try:
                time_pattern = TimePattern(raw_pattern)
            except ValueError:
                logger.warning("Obstacle %s has unknown time pattern %r, ignoring",
                               obstacle_id, raw_pattern)

        last_verified = _first(record, "last_verified_at", "lastVerifiedAt")

        return cls(
            id=str(obstacle_id),
            location=location,
            type=obstacle_type,
            severity=severity,
            reported_at=parse_timestamp(_first(record, "reported_at", "reportedAt")),
            description=str(_first(record, "description", default="")),
            reported_by=str(_first(record, "reported_by", "reportedBy", default="")),
            upvotes=_vote_count(record, "upvotes"),
            downvotes=_vote_count(record, "downvotes"),
            status=status,
            verified=bool(_first(record, "verified", default=False)),
            last_verified_at=parse_timestamp(last_verified) if last_verified else None,
            time_pattern=time_pattern,
        )


def parse_obstacles(records: Iterable[Any]) -> List[Obstacle]:
    """Parse store records, skipping malformed ones with a warning."""
    obstacles: List[Obstacle] = []
    for record in records or []:
        if isinstance(record, Obstacle):
            obstacles.append(record)
            continue
        try:
            obstacles.append(Obstacle.from_record(record))
        except (ValueError, TypeError) as e:
            record_id = record.get("id") if isinstance(record, dict) else None
            logger.warning("Skipping malformed obstacle record %s: %s", record_id, e)
    return obstacles


# =============================================================================
# Scoring inputs and outputs
# =============================================================================

@dataclass
class SidewalkSnapshot:
    """Observed conditions for a sidewalk segment or a whole route."""
    obstacles: List[Obstacle] = field(default_factory=list)
    estimated_width_m: float = 1.5
    surface: SurfaceCondition = SurfaceCondition.SMOOTH
    slope_pct: float = 0.0
    lighting: LightingLevel = LightingLevel.GOOD
    shade: ShadeLevel = ShadeLevel.PARTIAL
    traffic: TrafficLevel = TrafficLevel.LOW
    has_ramp: bool = False
    has_handrails: bool = False
    # Time-patterned obstacles are judged active at this instant; None
    # means "assume active" so scores never depend on the wall clock.
    observed_at: Optional[datetime] = None


@dataclass(frozen=True)
class AccessibilityScore:
    traversability: float
    safety: float
    comfort: float
    overall: float
    grade: str                       # "A".."F"
    user_specific_adjustment: float


@dataclass(frozen=True)
class ProximityAlert:
    obstacle: Obstacle
    distance: int             # meters, straight line
    time_to_encounter: int    # seconds at the profile's walking speed
    severity: Severity
    confidence: float         # 0-1, two decimals
    urgency: int              # 0-100


@dataclass(frozen=True)
class ValidationStatus:
    obstacle_id: str
    tier: ValidationTier
    display_label: str
    confidence: ConfidenceLevel
    validation_count: int
    conflicting_reports: bool
    needs_validation: bool
    auto_expire_date: datetime


@dataclass(frozen=True)
class ValidationPrompt:
    obstacle_id: str
    obstacle_type: ObstacleType
    message: str
    location: Location
    distance: int
    report_count: int


# =============================================================================
# Routes and detours
# =============================================================================

@dataclass(frozen=True)
class RouteStep:
    instructions: str = ""
    travel_mode: str = "WALKING"
    maneuver: str = ""
    distance_m: float = 0.0
    duration_s: float = 0.0


@dataclass
class Route:
    polyline: List[Location]
    duration_s: float
    distance_m: float
    steps: List[RouteStep] = field(default_factory=list)
    summary: str = ""
    # Some providers report the detour cost directly when a waypoint is
    # given; when absent, callers compute it against the direct route.
    extra_time_s: Optional[float] = None
    extra_distance_m: Optional[float] = None


@dataclass(frozen=True)
class MicroDetour:
    route: Route
    extra_time: int            # seconds
    extra_distance: int        # meters
    safety_rating: SafetyRating
    confidence: float          # 0-1
    reason: str                # e.g. "50m north detour"
    route_similarity: float    # 0-1


@dataclass(frozen=True)
class DetourStats:
    cache_size: int
    hits: int
    misses: int
    inflight: int
    hit_rate: float


@dataclass(frozen=True)
class RouteConfidence:
    level: ConfidenceLevel
    score: int                 # 0-100
    obstacle_reports: int
    verified_reports: int
    data_freshness: str        # "fresh" | "recent" | "stale" | "none"


@dataclass
class ScoredRoute:
    route: Route
    score: AccessibilityScore
    obstacles: List[Obstacle]
    confidence: RouteConfidence


@dataclass
class RouteComparison:
    fastest: ScoredRoute
    accessible: ScoredRoute
    time_difference_s: int
    distance_difference_m: int
    accessibility_improvement: float
    recommendation: str        # "fastest" | "accessible"
    message: str = ""
    same_route: bool = False
