"""
Obstacle consensus — trust tiers and "is it still there?" prompts.

Tier is derived from the obstacle record, never stored here:

  admin_resolved      verified flag set, or status == resolved
  community_verified  status == verified, or total votes >= threshold
  single_report       everything else

A disputed obstacle (downvotes > 0 and upvotes <= downvotes) always
needs validation, whatever its tier.

Prompt selection picks ONE nearby candidate by weighted random sampling
(closer = heavier) so validation load spreads across pending reports
instead of always hitting the nearest one.  Per-session state (prompt
count, cooldowns) lives in ValidationSession and is reset at the start
of every navigation session.
"""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from collaborators import best_effort
from geo_math import distance_between
from models import (
    ConfidenceLevel,
    Location,
    MobilityProfile,
    Obstacle,
    ObstacleStatus,
    ValidationPrompt,
    ValidationResponse,
    ValidationStatus,
    ValidationTier,
    parse_obstacles,
    utc_now,
)
from scoring_config import ROUTING_MODEL, ConsensusConfig, obstacle_info

logger = logging.getLogger(__name__)

VALIDATION_METHOD = "proximity_prompt"

_RESPONSE_ACTIONS = {
    ValidationResponse.STILL_THERE: ("upvote", "confirmed"),
    ValidationResponse.CLEARED: ("downvote", "disputed"),
    ValidationResponse.SKIP: (None, "skipped"),
}


# =============================================================================
# Tier classification
# =============================================================================

def get_validation_status(obstacle: Obstacle,
                          config: ConsensusConfig = ROUTING_MODEL.consensus,
                          ) -> ValidationStatus:
    """Trust classification of an obstacle.  Pure function of the record."""
    up = obstacle.upvotes
    down = obstacle.downvotes
    total = up + down

    if obstacle.verified or obstacle.status == ObstacleStatus.RESOLVED:
        tier = ValidationTier.ADMIN_RESOLVED
        confidence = ConfidenceLevel.HIGH
        if obstacle.status == ObstacleStatus.RESOLVED:
            label = "CLEARED by Admin"
        else:
            label = "VERIFIED by Admin"
    elif (obstacle.status == ObstacleStatus.VERIFIED
          or total >= config.community_vote_threshold):
        tier = ValidationTier.COMMUNITY_VERIFIED
        confidence = ConfidenceLevel.MEDIUM if up > down else ConfidenceLevel.LOW
        label = f"Community Verified ({up} confirms, {down} disputes)"
    else:
        tier = ValidationTier.SINGLE_REPORT
        confidence = ConfidenceLevel.LOW
        label = "Single Report - Unverified"

    disputed = down > 0 and up <= down
    return ValidationStatus(
        obstacle_id=obstacle.id,
        tier=tier,
        display_label=label,
        confidence=confidence,
        validation_count=total,
        conflicting_reports=down > 0,
        needs_validation=tier == ValidationTier.SINGLE_REPORT or disputed,
        auto_expire_date=obstacle.expires_at(config.auto_expire_days),
    )


def prompt_message(obstacle: Obstacle) -> str:
    return f"Quick check: Is there still {obstacle_info(obstacle.type).prompt_label} here?"


def candidate_weight(distance_m: float, radius_m: float) -> float:
    """Closer obstacles weigh more; every candidate keeps weight >= 1."""
    return max(1.0, (radius_m - distance_m) / (radius_m / 4.0))


def weighted_choice(items: List[Tuple[Obstacle, float, float]],
                    rng: random.Random) -> Tuple[Obstacle, float, float]:
    """Pick one (obstacle, distance, weight) tuple proportionally to weight."""
    total = sum(weight for _, _, weight in items)
    pick = rng.random() * total
    for item in items:
        pick -= item[2]
        if pick < 0:
            return item
    return items[-1]


# =============================================================================
# Session state
# =============================================================================

@dataclass
class ValidationSession:
    """Per-navigation-session prompt counter and local cooldowns."""
    prompt_count: int = 0
    cooldowns: Dict[str, datetime] = field(default_factory=dict)

    def reset(self) -> None:
        self.prompt_count = 0
        self.cooldowns.clear()

    def in_cooldown(self, obstacle_id: str, now: datetime, config: ConsensusConfig) -> bool:
        last = self.cooldowns.get(obstacle_id)
        return last is not None and now - last < config.cooldown


# =============================================================================
# Engine
# =============================================================================

class ObstacleConsensusEngine:
    """Chooses validation prompts for one rider and applies their answers."""

    def __init__(self, store, rider_id: str = "anonymous",
                 config: Optional[ConsensusConfig] = None,
                 rng: Optional[random.Random] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.rider_id = rider_id
        self.config = config or ROUTING_MODEL.consensus
        self.rng = rng or random.Random()
        self._clock = clock
        self.session = ValidationSession()
        self._check_lock = threading.Lock()

    def reset_session(self) -> None:
        self.session.reset()

    def check_for_validation_prompts(self, location: Optional[Location],
                                     profile: Optional[MobilityProfile] = None,
                                     ) -> List[ValidationPrompt]:
        """At most one prompt for the rider, or [] when nothing qualifies.

        Overlapping calls return [] immediately rather than queueing.
        """
        if not self._check_lock.acquire(blocking=False):
            logger.debug("[consensus] Prompt check already in flight, skipping")
            return []
        try:
            return self._check(location)
        finally:
            self._check_lock.release()

    def _check(self, location: Optional[Location]) -> List[ValidationPrompt]:
        if self.session.prompt_count >= self.config.max_prompts_per_session:
            return []
        if location is None:
            return []
        if (location.accuracy is not None
                and location.accuracy > self.config.max_location_accuracy_m):
            logger.debug("[consensus] Location accuracy %.0fm too poor for prompts",
                         location.accuracy)
            return []

        radius_m = self.config.proximity_radius_m
        try:
            records = self.store.get_obstacles_in_area(
                location.latitude, location.longitude, radius_m / 1000.0,
            )
        except Exception:
            logger.warning("[consensus] Obstacle fetch failed; no prompt this cycle",
                           exc_info=True)
            return []

        now = self._clock()
        candidates: List[Tuple[Obstacle, float, float]] = []
        for obstacle in parse_obstacles(records):
            if obstacle.reported_by and obstacle.reported_by == self.rider_id:
                continue
            if self.session.in_cooldown(obstacle.id, now, self.config):
                continue
            if obstacle.is_expired(now, self.config.auto_expire_days):
                continue
            status = get_validation_status(obstacle, self.config)
            if status.tier == ValidationTier.ADMIN_RESOLVED:
                continue
            if not status.needs_validation:
                continue
            distance = distance_between(location, obstacle.location)
            if distance > radius_m:
                continue
            candidates.append((obstacle, distance, candidate_weight(distance, radius_m)))

        if not candidates:
            return []

        obstacle, distance, weight = weighted_choice(candidates, self.rng)
        self.session.prompt_count += 1
        logger.info(
            "[consensus] Prompting for %s (%s) at %dm, weight=%.2f of %d candidates "
            "[session %d/%d]",
            obstacle.id, obstacle.type.value, int(distance + 0.5), weight,
            len(candidates), self.session.prompt_count,
            self.config.max_prompts_per_session,
        )
        return [ValidationPrompt(
            obstacle_id=obstacle.id,
            obstacle_type=obstacle.type,
            message=prompt_message(obstacle),
            location=obstacle.location,
            distance=int(distance + 0.5),
            report_count=obstacle.total_votes + 1,
        )]

    def process_validation_response(self, obstacle_id: str,
                                    response: Union[ValidationResponse, str],
                                    location: Optional[Location] = None) -> None:
        """Apply one rider answer: at most one vote, then a cooldown and a best-effort event.

        Raises ValueError for an unknown response.  Store failures on the
        vote itself propagate; the event record never does.
        """
        response = ValidationResponse(response)
        vote, action = _RESPONSE_ACTIONS[response]

        if vote is not None:
            self.store.increment_vote(obstacle_id, vote)

        now = self._clock()
        self.session.cooldowns[obstacle_id] = now
        logger.info("[consensus] %s: %s", obstacle_id, action)

        best_effort(
            self.store.record_validation_event,
            obstacle_id, action, now, location, VALIDATION_METHOD,
        )
