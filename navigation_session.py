"""
Per-rider navigation session: the fast alert tick and the slow prompt tick.

Two daemon threads, each looping on its own threading.Event:
  - proximity tick every ProximityConfig.update_interval_s: runs the
    ProximityDetector, hands alerts to on_alerts, and offers each new
    critical alert to on_critical_alert (optionally with a micro-detour
    computed off-thread).
  - validation tick every ConsensusConfig.prompt_interval_s: asks the
    ObstacleConsensusEngine for at most one prompt.

Every engine here is owned by the session, so nothing crosses riders.
stop() ends both loops, clears the detector's movement memo, and bumps a
generation counter; detour searches started under an older generation
see themselves cancelled and their results are dropped.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set

import accessibility_scorer
from micro_detour import MicroDetourEngine, fallback_message
from models import (
    AccessibilityScore,
    Location,
    MicroDetour,
    MobilityProfile,
    Obstacle,
    ProximityAlert,
    SidewalkSnapshot,
    ValidationPrompt,
    ValidationResponse,
)
from obstacle_consensus import ObstacleConsensusEngine
from proximity_detector import ProximityDetector, is_critical
from scoring_config import ROUTING_MODEL

logger = logging.getLogger(__name__)

# How long stop() waits for each loop or detour thread to exit.
STOP_JOIN_TIMEOUT_S = 2.0


@dataclass(frozen=True)
class DetourOffer:
    obstacle_id: str
    detour: Optional[MicroDetour]
    fallback_message: str


class NavigationSession:
    def __init__(self, store, routing_client, profile: MobilityProfile,
                 rider_id: str = "anonymous",
                 detector: Optional[ProximityDetector] = None,
                 detour_engine: Optional[MicroDetourEngine] = None,
                 consensus: Optional[ObstacleConsensusEngine] = None,
                 on_alerts: Optional[Callable[[List[ProximityAlert]], None]] = None,
                 on_critical_alert: Optional[Callable[[ProximityAlert, Optional[DetourOffer]], None]] = None,
                 on_prompt: Optional[Callable[[ValidationPrompt], None]] = None,
                 auto_detour: bool = False):
        self.profile = profile
        self.detector = detector or ProximityDetector(store)
        self.detour_engine = detour_engine or MicroDetourEngine(routing_client)
        self.consensus = consensus or ObstacleConsensusEngine(store, rider_id=rider_id)
        self.on_alerts = on_alerts
        self.on_critical_alert = on_critical_alert
        self.on_prompt = on_prompt
        self.auto_detour = auto_detour

        self._lock = threading.Lock()
        self._location: Optional[Location] = None
        self._route: List[Location] = []
        self._destination: Optional[Location] = None
        self._critical_ids: Set[str] = set()
        self._generation = 0
        self._active = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self, route_polyline: Sequence[Location], destination: Location,
              location: Optional[Location] = None, run_loops: bool = True) -> None:
        """Begin navigating.  Resets detector state and the prompt session.

        With run_loops=False no threads are started; callers drive the
        ticks themselves via run_proximity_tick()/run_validation_tick().
        """
        if self._active:
            self.stop()

        with self._lock:
            self._route = list(route_polyline)
            self._destination = destination
            self._location = location
            self._critical_ids.clear()
            self._generation += 1
            self._active = True

        self.detector.reset()
        self.consensus.reset_session()

        self._stop_event = threading.Event()
        self._threads = []
        if run_loops:
            self._spawn(self._proximity_tick_safe,
                        ROUTING_MODEL.proximity.update_interval_s, "proximity")
            self._spawn(self._validation_tick_safe,
                        ROUTING_MODEL.consensus.prompt_interval_s, "validation")
        logger.info("[nav] Session started: %d route points, profile=%s",
                    len(self._route), self.profile.type.value)

    def stop(self) -> None:
        """Stop both loops, wait briefly for them and any detour worker, and
        forget movement state.  Safe to call twice.
        """
        with self._lock:
            was_active = self._active
            self._active = False
            self._generation += 1
            self._critical_ids.clear()
        self._stop_event.set()
        self.detector.reset()
        self._join_threads()
        if was_active:
            logger.info("[nav] Session stopped")

    def _join_threads(self) -> None:
        with self._lock:
            threads, self._threads = self._threads, []
        current = threading.current_thread()
        for thread in threads:
            if thread is current:
                continue
            thread.join(timeout=STOP_JOIN_TIMEOUT_S)
            if thread.is_alive():
                logger.warning("[nav] Thread %s still running after stop", thread.name)

    def _spawn(self, tick: Callable[[], None], interval: float, name: str) -> None:
        stop_event = self._stop_event

        def loop():
            logger.info("[nav] %s loop started", name)
            while not stop_event.is_set():
                tick()
                stop_event.wait(timeout=interval)
            logger.info("[nav] %s loop stopped", name)

        thread = threading.Thread(target=loop, name=f"nav-{name}", daemon=True)
        self._track(thread)

    def _track(self, thread: threading.Thread) -> None:
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def _capture(self, name: str, e: Exception) -> None:
        logger.exception("[nav] Unhandled error in %s tick", name)
        if os.environ.get("SENTRY_DSN"):
            import sentry_sdk
            with sentry_sdk.new_scope() as scope:
                scope.set_tag("tick", name)
                scope.set_tag("profile", self.profile.type.value)
                sentry_sdk.capture_exception(e)

    def _proximity_tick_safe(self) -> None:
        try:
            self.run_proximity_tick()
        except Exception as e:
            self._capture("proximity", e)

    def _validation_tick_safe(self) -> None:
        try:
            self.run_validation_tick()
        except Exception as e:
            self._capture("validation", e)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def update_location(self, location: Location) -> None:
        with self._lock:
            self._location = location

    def update_route(self, route_polyline: Sequence[Location]) -> None:
        with self._lock:
            self._route = list(route_polyline)
        # A new route invalidates the movement gate.
        self.detector.reset()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_proximity_tick(self) -> List[ProximityAlert]:
        with self._lock:
            if not self._active:
                return []
            location = self._location
            route = list(self._route)

        alerts = self.detector.detect_obstacles_ahead(location, route, self.profile)
        if alerts and self.on_alerts:
            self.on_alerts(alerts)

        for alert in alerts:
            if not is_critical(alert, self.detector.config):
                continue
            with self._lock:
                if alert.obstacle.id in self._critical_ids:
                    continue
                self._critical_ids.add(alert.obstacle.id)
            self._offer(alert)
        return alerts

    def _offer(self, alert: ProximityAlert) -> None:
        if not self.on_critical_alert:
            return
        if not self.auto_detour:
            self.on_critical_alert(alert, None)
            return

        def worker():
            try:
                offer = self.request_detour(alert.obstacle)
            except Exception as e:
                self._capture("detour", e)
                return
            if offer is not None:
                self.on_critical_alert(alert, offer)

        self._track(threading.Thread(target=worker, name="nav-detour", daemon=True))

    def run_validation_tick(self) -> List[ValidationPrompt]:
        with self._lock:
            if not self._active:
                return []
            location = self._location

        prompts = self.consensus.check_for_validation_prompts(location, self.profile)
        if self.on_prompt:
            for prompt in prompts:
                self.on_prompt(prompt)
        return prompts

    # ------------------------------------------------------------------
    # On-demand calls
    # ------------------------------------------------------------------

    def request_detour(self, obstacle: Obstacle) -> Optional[DetourOffer]:
        """Micro-detour around *obstacle* from the current location.

        Returns None if the session was stopped while the search ran.
        """
        with self._lock:
            generation = self._generation
            location = self._location
            destination = self._destination

        def cancelled() -> bool:
            return not self._active or self._generation != generation

        detour = None
        if location is not None and destination is not None:
            detour = self.detour_engine.create_micro_detour(
                location, obstacle, destination, self.profile, is_cancelled=cancelled,
            )
        if cancelled():
            logger.info("[nav] Discarding detour for %s from a stopped session", obstacle.id)
            return None
        return DetourOffer(
            obstacle_id=obstacle.id,
            detour=detour,
            fallback_message=fallback_message(obstacle.type),
        )

    def respond_to_prompt(self, obstacle_id: str, response: ValidationResponse) -> None:
        with self._lock:
            location = self._location
        self.consensus.process_validation_response(obstacle_id, response, location)

    def score(self, snapshot: SidewalkSnapshot) -> AccessibilityScore:
        return accessibility_scorer.score(snapshot, self.profile)
