"""Tests for accessibility_scorer.py — AHP accessibility scores.

Tests cover: the three criteria, the user-specific adjustment, time
patterns, rounding and grades, determinism.
"""

from datetime import datetime, timezone

import pytest

from accessibility_scorer import (
    MAX_USER_ADJUSTMENT,
    _round1,
    is_time_pattern_active,
    obstacle_traversability_penalty,
    score,
    score_obstacles,
)
from models import (
    LightingLevel,
    MobilityProfile,
    MobilityType,
    ShadeLevel,
    SidewalkSnapshot,
    SurfaceCondition,
    TimePattern,
    TrafficLevel,
)
from fakes import make_obstacle

MORNING = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)    # Monday
EVENING = datetime(2026, 3, 2, 19, 0, tzinfo=timezone.utc)
SATURDAY = datetime(2026, 3, 7, 10, 0, tzinfo=timezone.utc)


# =========================================================================
# Helpers
# =========================================================================

class TestRounding:
    def test_half_up(self):
        assert _round1(81.25) == 81.3
        assert _round1(0.05) == 0.1
        assert _round1(86.5) == 86.5

    def test_negative_half_rounds_toward_positive(self):
        assert _round1(-0.25) == -0.2


class TestTimePatterns:
    @pytest.mark.parametrize("pattern,at,active", [
        (None, MORNING, True),
        (TimePattern.PERMANENT, EVENING, True),
        (TimePattern.MORNING, MORNING, True),
        (TimePattern.MORNING, EVENING, False),
        (TimePattern.EVENING, EVENING, True),
        (TimePattern.AFTERNOON, MORNING, False),
        (TimePattern.WEEKEND, SATURDAY, True),
        (TimePattern.WEEKEND, MORNING, False),
        (TimePattern.MORNING, None, True),
    ])
    def test_activity(self, pattern, at, active):
        assert is_time_pattern_active(pattern, at) is active


# =========================================================================
# Criteria
# =========================================================================

class TestScoreBaseline:
    def test_clear_sidewalk_scores_high_on_every_axis(self, pedestrian):
        result = score(SidewalkSnapshot(), pedestrian)
        assert result.traversability >= 90
        assert result.safety >= 90
        assert result.comfort >= 90
        assert result.grade == "A"

    @pytest.mark.parametrize("mobility_type", list(MobilityType))
    @pytest.mark.parametrize("overrides", [
        {},
        {"avoid_stairs": True, "avoid_crowds": True},
        {"prefer_shade": True},
        {"max_walking_distance": 100.0},
        {"max_ramp_slope": 5.0},
    ])
    def test_no_obstacles_is_grade_a_for_any_profile(self, mobility_type, overrides):
        profile = MobilityProfile.for_type(mobility_type, **overrides)
        result = score(SidewalkSnapshot(obstacles=[]), profile)
        assert result.overall >= 90
        assert result.grade == "A"
        for axis in (result.traversability, result.safety, result.comfort):
            assert axis >= 90

    def test_single_medium_vendor(self, pedestrian):
        snapshot = SidewalkSnapshot(obstacles=[make_obstacle()])
        result = score(snapshot, pedestrian)

        assert result.traversability == 85.0
        assert result.safety == 90.0
        assert result.comfort == 90.0
        assert result.overall == 86.5
        assert result.grade == "A"
        assert result.user_specific_adjustment == 0.0

    def test_deterministic(self, wheelchair):
        snapshot = SidewalkSnapshot(
            obstacles=[make_obstacle("a"), make_obstacle("b", type="flooding", severity="high")],
            surface=SurfaceCondition.ROUGH,
            slope_pct=10,
        )
        assert score(snapshot, wheelchair) == score(snapshot, wheelchair)

    def test_scores_bounded(self, wheelchair):
        obstacles = [
            make_obstacle(f"o{i}", type="no_sidewalk", severity="blocking") for i in range(10)
        ]
        snapshot = SidewalkSnapshot(
            obstacles=obstacles,
            traffic=TrafficLevel.HIGH,
            lighting=LightingLevel.NONE,
            surface=SurfaceCondition.BROKEN,
        )
        result = score(snapshot, wheelchair)
        for value in (result.traversability, result.safety, result.comfort, result.overall):
            assert 0.0 <= value <= 100.0
        assert result.traversability == 0.0
        assert result.grade == "F"


class TestTraversability:
    def test_width_shortfall_uses_profile_default(self, wheelchair):
        result = score(SidewalkSnapshot(estimated_width_m=0.6), wheelchair)
        # 0.3 m short of 0.9 m at 20/m
        assert result.traversability == 94.0

    def test_walker_width_requirement(self, walker):
        result = score(SidewalkSnapshot(estimated_width_m=0.5), walker)
        assert result.traversability == 96.0

    def test_width_penalty_on_bare_path(self, wheelchair):
        result = score(SidewalkSnapshot(estimated_width_m=0.0), wheelchair)
        assert result.traversability == 82.0

    def test_surface_worse_for_wheeled(self, wheelchair, pedestrian):
        snapshot = SidewalkSnapshot(surface=SurfaceCondition.BROKEN)
        assert score(snapshot, wheelchair).traversability == 65.0
        assert score(snapshot, pedestrian).traversability == 75.0

    def test_slope_over_ramp_limit(self, wheelchair, pedestrian):
        snapshot = SidewalkSnapshot(slope_pct=10.33)
        # 2 percent over 8.33
        assert score(snapshot, wheelchair).traversability == 84.0
        assert score(snapshot, pedestrian).traversability == 98.0

    def test_morning_pattern_active_vs_inactive(self, pedestrian):
        vendor = make_obstacle(time_pattern="morning")
        active = score(SidewalkSnapshot(obstacles=[vendor], observed_at=MORNING), pedestrian)
        inactive = score(SidewalkSnapshot(obstacles=[vendor], observed_at=EVENING), pedestrian)
        assert active.traversability == 82.0
        assert inactive.traversability == 85.0

    def test_unknown_observation_time_treats_pattern_as_active(self, pedestrian):
        vendor = make_obstacle(time_pattern="morning")
        assert score(SidewalkSnapshot(obstacles=[vendor]), pedestrian).traversability == 82.0

    def test_crowd_avoidance_amplifies_vendors(self):
        profile = MobilityProfile(type=MobilityType.NONE, avoid_crowds=True)
        result = score(SidewalkSnapshot(obstacles=[make_obstacle()]), profile)
        assert result.traversability == 77.5
        assert result.overall == 81.3

    def test_stairs_strictness(self, wheelchair, pedestrian):
        stairs = make_obstacle(type="stairs_no_ramp", severity="blocking")
        assert obstacle_traversability_penalty(stairs, wheelchair) > \
            obstacle_traversability_penalty(stairs, pedestrian)
        assert score(SidewalkSnapshot(obstacles=[stairs]), wheelchair).traversability == 0.0
        assert score(SidewalkSnapshot(obstacles=[stairs]), pedestrian).traversability == 40.0


class TestSafetyAndComfort:
    def test_traffic_and_lighting(self, pedestrian):
        snapshot = SidewalkSnapshot(traffic=TrafficLevel.HIGH, lighting=LightingLevel.POOR)
        assert score(snapshot, pedestrian).safety == 60.0

    def test_blocking_hazard_amplified(self, pedestrian):
        snapshot = SidewalkSnapshot(obstacles=[make_obstacle(type="construction", severity="blocking")])
        # 100 - 5 traffic - 30 * 1.5
        assert score(snapshot, pedestrian).safety == 50.0

    def test_shade_only_counts_when_preferred(self, pedestrian):
        shade_lover = MobilityProfile(type=MobilityType.NONE, prefer_shade=True)
        snapshot = SidewalkSnapshot(shade=ShadeLevel.NONE)
        assert score(snapshot, pedestrian).comfort == 100.0
        assert score(snapshot, shade_lover).comfort == 60.0

    def test_handrails_help_walker(self, walker):
        snapshot = SidewalkSnapshot(has_handrails=True, surface=SurfaceCondition.ROUGH)
        assert score(snapshot, walker).comfort == 95.0


# =========================================================================
# User-specific adjustment
# =========================================================================

class TestUserAdjustment:
    def test_avoid_stairs_without_ramp(self, wheelchair):
        stairs = make_obstacle(type="stairs_no_ramp", severity="low")
        assert score(SidewalkSnapshot(obstacles=[stairs]), wheelchair).user_specific_adjustment == -10.0

    def test_ramp_offsets_stairs_for_wheelchair(self, wheelchair):
        stairs = make_obstacle(type="stairs_no_ramp", severity="low")
        snapshot = SidewalkSnapshot(obstacles=[stairs], has_ramp=True, has_handrails=True)
        assert score(snapshot, wheelchair).user_specific_adjustment == 8.0

    def test_short_range_rider_with_many_obstacles(self):
        profile = MobilityProfile(type=MobilityType.CANE, max_walking_distance=300)
        obstacles = [make_obstacle(f"o{i}", severity="low") for i in range(3)]
        assert score(SidewalkSnapshot(obstacles=obstacles), profile).user_specific_adjustment == -5.0

    def test_covered_shade_bonus(self):
        profile = MobilityProfile(type=MobilityType.NONE, prefer_shade=True)
        assert score(SidewalkSnapshot(shade=ShadeLevel.COVERED), profile).user_specific_adjustment == 3.0

    def test_adjustment_bounded(self, wheelchair):
        stairs = make_obstacle(type="stairs_no_ramp")
        result = score(SidewalkSnapshot(obstacles=[stairs]), wheelchair)
        assert abs(result.user_specific_adjustment) <= MAX_USER_ADJUSTMENT


class TestScoreObstacles:
    def test_uses_default_conditions(self, pedestrian):
        assert score_obstacles([make_obstacle()], pedestrian).overall == 86.5

    def test_observed_at_passed_through(self, pedestrian):
        vendor = make_obstacle(time_pattern="morning")
        assert score_obstacles([vendor], pedestrian, observed_at=EVENING).traversability == 85.0
