"""
Google Directions HTTP layer — the production RoutingClient.

All routing HTTP requests go through DirectionsClient.  It provides:
- Walking-mode directions with optional pass-through waypoints
- A per-call timeout so a slow provider can't stall a navigation tick
- Error classification the detour engine relies on:
    OVER_QUERY_LIMIT / OVER_DAILY_LIMIT / HTTP 429 / "quota"  -> RoutingQuotaError
    connection failures and timeouts                          -> RoutingUnavailableError
    any other non-OK status                                   -> RoutingError
    ZERO_RESULTS / NOT_FOUND                                  -> no routes (not an error)
- route_trace integration for observability

No retries: quota errors must stop the caller's loop, and transient
failures are simply retried on the next navigation tick.
"""

import html
import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from collaborators import RoutingError, RoutingQuotaError, RoutingUnavailableError
from geo_math import decode_polyline
from models import Location, Route, RouteStep
from route_trace import get_trace

logger = logging.getLogger(__name__)

_QUOTA_STATUSES = ("OVER_QUERY_LIMIT", "OVER_DAILY_LIMIT")
_EMPTY_STATUSES = ("ZERO_RESULTS", "NOT_FOUND")
_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    """Plain text from Google's html_instructions."""
    return " ".join(html.unescape(_TAG_RE.sub(" ", text or "")).split())


def _latlng(location: Location) -> str:
    return f"{location.latitude},{location.longitude}"


class DirectionsClient:
    """Client for the Google Directions API (walking mode)."""

    # Per-call timeout in seconds.
    DEFAULT_TIMEOUT = 10

    def __init__(self, api_key: str, base_url: Optional[str] = None,
                 region: Optional[str] = None, timeout: Optional[float] = None):
        if not api_key:
            raise ValueError("DirectionsClient requires an API key")
        self.api_key = api_key
        self.base_url = base_url or "https://maps.googleapis.com/maps/api"
        self.region = region
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.session = requests.Session()
        self.session.trust_env = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _traced_get(self, endpoint_name: str, params: dict) -> Dict[str, Any]:
        """GET /directions/json with trace recording and error classification."""
        url = f"{self.base_url}/directions/json"
        trace = get_trace()
        t0 = time.time()
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            elapsed_ms = int((time.time() - t0) * 1000)
            if trace:
                trace.record_api_call(
                    service="google_directions",
                    endpoint=endpoint_name,
                    elapsed_ms=elapsed_ms,
                    status_code=0,
                    provider_status="network_error",
                )
            raise RoutingUnavailableError(f"Directions request failed: {e}") from e

        elapsed_ms = int((time.time() - t0) * 1000)
        status_code = response.status_code

        if status_code == 429:
            if trace:
                trace.record_api_call(
                    service="google_directions",
                    endpoint=endpoint_name,
                    elapsed_ms=elapsed_ms,
                    status_code=429,
                    provider_status="rate_limit",
                )
            raise RoutingQuotaError("Directions HTTP 429 Too Many Requests")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            if trace:
                trace.record_api_call(
                    service="google_directions",
                    endpoint=endpoint_name,
                    elapsed_ms=elapsed_ms,
                    status_code=status_code,
                    provider_status="parse_error",
                )
            raise RoutingError(f"Directions returned non-JSON body (HTTP {status_code})")

        provider_status = data.get("status", "")
        if trace:
            trace.record_api_call(
                service="google_directions",
                endpoint=endpoint_name,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )

        error_message = data.get("error_message", "")
        if provider_status in _QUOTA_STATUSES or "quota" in error_message.lower():
            raise RoutingQuotaError(f"Directions API quota exhausted: {provider_status}")
        if status_code >= 500:
            raise RoutingUnavailableError(f"Directions HTTP {status_code}")
        if provider_status != "OK" and provider_status not in _EMPTY_STATUSES:
            raise RoutingError(
                f"Directions API failed: {provider_status} {error_message}".strip()
            )
        return data

    def _params(self, origin: Location, destination: Location) -> dict:
        params = {
            "origin": _latlng(origin),
            "destination": _latlng(destination),
            "mode": "walking",
            "key": self.api_key,
        }
        if self.region:
            params["region"] = self.region
        return params

    # ------------------------------------------------------------------
    # RoutingClient interface
    # ------------------------------------------------------------------

    def get_route(self, origin: Location, destination: Location,
                  waypoints: Optional[Sequence[Location]] = None) -> Optional[Route]:
        """Best walking route, passing through *waypoints* without stopping."""
        params = self._params(origin, destination)
        if waypoints:
            params["waypoints"] = "|".join(f"via:{_latlng(w)}" for w in waypoints)
        data = self._traced_get("waypoint_route" if waypoints else "directions", params)
        routes = data.get("routes") or []
        if not routes:
            return None
        return parse_route(routes[0])

    def get_routes(self, origin: Location, destination: Location,
                   alternatives: bool = False) -> List[Route]:
        """Direct walking routes, fastest first as ordered by the provider."""
        params = self._params(origin, destination)
        if alternatives:
            params["alternatives"] = "true"
        data = self._traced_get("directions", params)
        return [parse_route(r) for r in data.get("routes") or []]


# =============================================================================
# Response parsing
# =============================================================================

def parse_route(raw: Dict[str, Any]) -> Route:
    """Convert one Directions API route object into a Route."""
    duration = 0.0
    distance = 0.0
    steps: List[RouteStep] = []
    for leg in raw.get("legs") or []:
        duration += (leg.get("duration") or {}).get("value", 0)
        distance += (leg.get("distance") or {}).get("value", 0)
        for step in leg.get("steps") or []:
            steps.append(RouteStep(
                instructions=strip_html(step.get("html_instructions", "")),
                travel_mode=step.get("travel_mode", "WALKING"),
                maneuver=step.get("maneuver", "") or "",
                distance_m=(step.get("distance") or {}).get("value", 0),
                duration_s=(step.get("duration") or {}).get("value", 0),
            ))

    encoded = (raw.get("overview_polyline") or {}).get("points", "")
    try:
        polyline = decode_polyline(encoded)
    except ValueError:
        logger.warning("Directions route has an undecodable polyline; using empty geometry")
        polyline = []

    return Route(
        polyline=polyline,
        duration_s=float(duration),
        distance_m=float(distance),
        steps=steps,
        summary=raw.get("summary", ""),
    )
