"""Tests for route_analysis.py — fastest vs. accessible route comparison."""

from datetime import timedelta

import pytest

from collaborators import RoutingError
from models import ConfidenceLevel
from route_analysis import (
    analyze_routes,
    calculate_route_confidence,
    collect_route_obstacles,
    sample_points,
)
from fakes import (
    BASE,
    NOW,
    FakeObstacleStore,
    FakeRoutingClient,
    east,
    make_obstacle,
    north,
    obstacle_record,
    walking_route,
)

NORTH_ROUTE = [BASE, north(400)]
EAST_ROUTE = [BASE, east(500)]


def _analyze(profile, routes, records):
    client = FakeRoutingClient(direct_routes=routes)
    store = FakeObstacleStore(records)
    return analyze_routes(BASE, north(400), profile, client, store, clock=lambda: NOW)


class TestSamplePoints:
    def test_short_polyline_kept(self):
        assert sample_points(NORTH_ROUTE) == NORTH_ROUTE
        assert sample_points([]) == []

    def test_long_polyline_start_middle_end(self):
        line = [north(100 * i) for i in range(7)]
        assert sample_points(line) == [line[0], line[3], line[6]]


class TestCollectRouteObstacles:
    def test_dedupes_and_filters(self):
        store = FakeObstacleStore([
            obstacle_record("on", north(100)),
            obstacle_record("off", east(40, north(100))),
            obstacle_record("gone", north(150), status="resolved"),
            obstacle_record("old", north(200), reported_at=NOW - timedelta(days=45)),
        ])
        route = walking_route(polyline=NORTH_ROUTE)
        obstacles = collect_route_obstacles(route, store, NOW)
        assert [o.id for o in obstacles] == ["on"]
        assert len(store.fetch_calls) == 2

    def test_store_failure_degrades(self):
        store = FakeObstacleStore([obstacle_record("on", north(100))])
        store.fail_fetch = True
        route = walking_route(polyline=NORTH_ROUTE)
        assert collect_route_obstacles(route, store, NOW) == []


class TestRouteConfidence:
    def test_no_reports(self):
        confidence = calculate_route_confidence([], NOW)
        assert confidence.level == ConfidenceLevel.MEDIUM
        assert confidence.score == 70
        assert confidence.data_freshness == "none"

    def test_fresh_verified_reports(self):
        obstacles = [make_obstacle(upvotes=2, downvotes=1, verified=True)]
        confidence = calculate_route_confidence(obstacles, NOW)
        assert confidence.level == ConfidenceLevel.HIGH
        assert confidence.score == 100
        assert confidence.verified_reports == 1
        assert confidence.data_freshness == "fresh"

    def test_stale_unverified_reports(self):
        obstacles = [make_obstacle(reported_at=NOW - timedelta(days=40))]
        confidence = calculate_route_confidence(obstacles, NOW)
        assert confidence.level == ConfidenceLevel.MEDIUM
        assert confidence.score == 60
        assert confidence.data_freshness == "stale"


class TestAnalyzeRoutes:
    def test_blocked_fastest_route_recommends_accessible(self, wheelchair):
        fastest = walking_route(duration=300, distance=400, polyline=NORTH_ROUTE)
        detour = walking_route(duration=420, distance=520, polyline=EAST_ROUTE)
        records = [obstacle_record("stairs", north(100), type="stairs_no_ramp", severity="blocking")]

        result = _analyze(wheelchair, [fastest, detour], records)

        assert result.fastest.route is fastest
        assert result.accessible.route is detour
        assert result.recommendation == "accessible"
        assert result.time_difference_s == 120
        assert result.distance_difference_m == 120
        assert result.accessibility_improvement > 50
        assert "2 min longer" in result.message
        assert "stairs no ramp" in result.message
        assert not result.same_route

    def test_minor_obstacle_keeps_fastest(self, pedestrian):
        fastest = walking_route(duration=300, polyline=NORTH_ROUTE)
        detour = walking_route(duration=420, polyline=EAST_ROUTE)
        records = [obstacle_record("debris", north(100), type="debris", severity="low")]

        result = _analyze(pedestrian, [fastest, detour], records)

        assert result.accessible.route is detour
        assert result.recommendation == "fastest"
        assert result.accessibility_improvement == pytest.approx(5.3)

    def test_single_route_is_same_route(self, pedestrian):
        only = walking_route(polyline=NORTH_ROUTE)
        result = _analyze(pedestrian, [only], [])
        assert result.same_route
        assert result.recommendation == "fastest"
        assert result.time_difference_s == 0

    def test_no_routes_raises(self, pedestrian):
        with pytest.raises(RoutingError):
            _analyze(pedestrian, [], [])
