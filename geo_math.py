"""
Geometry helpers for pedestrian-scale routing.

Pure functions, no state. Distances are in meters, angles in degrees.

Point-to-segment distance projects onto the segment in raw lat/lng space
and then measures the haversine distance to the projected point. The
planar projection distorts with latitude, but over sidewalk-length
segments (well under 500 m) the error is far below GPS noise.
"""

import math
from typing import List, Optional, Sequence, Tuple

from models import Location

EARTH_RADIUS_M = 6371000.0


# =============================================================================
# Point distances
# =============================================================================

def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lng2 - lng1)

    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Location, b: Location) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing_deg(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial bearing from point 1 to point 2, normalized to [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlam = math.radians(lng2 - lng1)

    y = math.sin(dlam) * math.cos(phi2)
    x = (
        math.cos(phi1) * math.sin(phi2)
        - math.sin(phi1) * math.cos(phi2) * math.cos(dlam)
    )
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def offset_point(
    lat: float, lng: float, bearing: float, distance_m: float,
) -> Tuple[float, float]:
    """Destination point given a start, bearing (degrees) and distance (m)."""
    d = distance_m / EARTH_RADIUS_M
    brng = math.radians(bearing)
    lat1 = math.radians(lat)
    lng1 = math.radians(lng)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(d)
        + math.cos(lat1) * math.sin(d) * math.cos(brng)
    )
    lng2 = lng1 + math.atan2(
        math.sin(brng) * math.sin(d) * math.cos(lat1),
        math.cos(d) - math.sin(lat1) * math.sin(lat2),
    )
    return math.degrees(lat2), math.degrees(lng2)


# =============================================================================
# Segment / polyline distances
# =============================================================================

def nearest_point_on_segment(
    p_lat: float, p_lng: float,
    a_lat: float, a_lng: float,
    b_lat: float, b_lng: float,
) -> Tuple[float, float]:
    """Closest point on segment AB to P, planar in lat/lng space."""
    abx = b_lat - a_lat
    aby = b_lng - a_lng
    apx = p_lat - a_lat
    apy = p_lng - a_lng

    ab_dot_ab = abx * abx + aby * aby
    if ab_dot_ab == 0:
        return (a_lat, a_lng)

    t = (apx * abx + apy * aby) / ab_dot_ab
    t = max(0.0, min(1.0, t))
    return (a_lat + t * abx, a_lng + t * aby)


def point_to_segment_m(point: Location, a: Location, b: Location) -> float:
    """Distance in meters from *point* to segment AB.

    A degenerate segment (A == B) is the haversine distance to A.
    """
    near_lat, near_lng = nearest_point_on_segment(
        point.latitude, point.longitude,
        a.latitude, a.longitude,
        b.latitude, b.longitude,
    )
    return haversine_m(point.latitude, point.longitude, near_lat, near_lng)


def distance_to_polyline_m(point: Location, polyline: Sequence[Location]) -> float:
    """Minimum distance from *point* to any segment of *polyline*.

    Returns infinity when the polyline has fewer than two points, so the
    caller's tolerance check always fails for an unusable route.
    """
    if len(polyline) < 2:
        return float("inf")

    min_dist = float("inf")
    for i in range(len(polyline) - 1):
        dist = point_to_segment_m(point, polyline[i], polyline[i + 1])
        if dist < min_dist:
            min_dist = dist
    return min_dist


# =============================================================================
# Encoded polylines
# =============================================================================

def decode_polyline(encoded: Optional[str]) -> List[Location]:
    """Decode a Google encoded polyline string (precision 1e-5).

    Raises ValueError if the string ends in the middle of a value.
    """
    points: List[Location] = []
    if not encoded:
        return points

    index = 0
    lat = 0
    lng = 0
    length = len(encoded)

    while index < length:
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                if index >= length:
                    raise ValueError("Truncated polyline string")
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append(Location(latitude=lat / 1e5, longitude=lng / 1e5))

    return points
