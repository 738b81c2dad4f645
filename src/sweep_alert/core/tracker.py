"""Parking state machine.

Idle ──exit──▶ AwaitingDriving ──driving──▶ AwaitingStop ──30 s stop──▶ Idle (parked)
                   │ 3 min, no driving            │ 30 min, no stop
                   ▼                              ▼
                 Idle (belief kept)             Idle (wait for a visit arrival)

Timeouts are checked lazily against ``clock.now()`` whenever an event comes
in; nothing is scheduled.  Each transition swaps the whole TrackingSession.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sweep_alert.contracts.events import (
    LocationUpdate,
    MotionHint,
    ParkingListener,
    RegionEntered,
    RegionExited,
    TrackerEvent,
    VisitEvent,
)
from sweep_alert.core.clock import Clock
from sweep_alert.core.geofence import GeofenceController
from sweep_alert.core.models import (
    GEOFENCE_RADIUS_M,
    Coordinate,
    LocationSample,
    ParkingEvent,
)
from sweep_alert.geo.geometry import haversine_m

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackerParams:
    walking_timeout_s: float = 3 * 60.0
    tracking_timeout_s: float = 30 * 60.0
    stop_confirm_s: float = 30.0

    # Speed heuristic: fast AND still near the car (rules out riding transit far away)
    driving_speed_mps: float = 5.0
    driving_max_distance_m: float = 250.0

    # Distance/time heuristic: farther than a brisk walk could have covered.
    # Guards against stale fixes that report speed 0.
    walking_speed_mps: float = 2.0
    distance_warmup_s: float = 15.0

    stopped_speed_mps: float = 3.0
    geofence_radius_m: float = GEOFENCE_RADIUS_M

    visit_driving_lookback: timedelta = timedelta(minutes=10)


class TrackerState(str, Enum):
    IDLE = "idle"
    AWAITING_DRIVING = "awaiting_driving"
    AWAITING_STOP = "awaiting_stop"


@dataclass(frozen=True)
class TrackingSession:
    phase: TrackerState
    session_start: datetime
    # Snapshot taken at exit; storage may be cleared mid-session
    parked_at: Optional[Coordinate]
    driving_confirmed: bool = False
    stopped_since: Optional[datetime] = None
    stopped_sample: Optional[LocationSample] = None

    def elapsed_s(self, now: datetime) -> float:
        return (now - self.session_start).total_seconds()


class ParkingTracker:
    """Turns location/visit/geofence events into parked/departed decisions.

    Events must be delivered one at a time; a re-entrant lock serializes
    callers that live on different threads.
    """

    def __init__(
        self,
        listener: ParkingListener,
        geofence: GeofenceController,
        clock: Clock,
        motion: Optional[MotionHint] = None,
        params: Optional[TrackerParams] = None,
    ):
        self.listener = listener
        self.geofence = geofence
        self.clock = clock
        self.motion = motion
        self.params = params or TrackerParams()
        self._lock = threading.RLock()
        self._session: Optional[TrackingSession] = None
        self._belief: Optional[ParkingEvent] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        s = self._session
        return TrackerState.IDLE if s is None else s.phase

    @property
    def session(self) -> Optional[TrackingSession]:
        return self._session

    @property
    def belief(self) -> Optional[ParkingEvent]:
        return self._belief

    # ------------------------------------------------------------------
    # Event sink
    # ------------------------------------------------------------------

    def handle(self, event: TrackerEvent) -> None:
        with self._lock:
            now = self.clock.now()
            self._expire(now)

            if isinstance(event, LocationUpdate):
                self._on_location(event.sample, now)
            elif isinstance(event, RegionExited):
                if not self.geofence.owns(event.identifier):
                    log.warning("Exit from unknown region %r ignored", event.identifier)
                    return
                self.start_tracking()
            elif isinstance(event, RegionEntered):
                log.debug("Entered region %r (state=%s)", event.identifier, self.state.value)
            elif isinstance(event, VisitEvent):
                self._on_visit(event, now)
            else:
                raise TypeError(f"Unsupported tracker event: {event!r}")

    def start_tracking(self) -> bool:
        """Begin a session after a geofence exit.  No-op if one is running."""
        with self._lock:
            if self._session is not None:
                log.warning("Tracking already active (%s); new session ignored",
                            self._session.phase.value)
                return False

            parked_at: Optional[Coordinate] = None
            if self._belief is not None:
                parked_at = self._belief.coordinate
            elif self.geofence.active is not None:
                parked_at = self.geofence.active.center

            now = self.clock.now()
            self._session = TrackingSession(
                phase=TrackerState.AWAITING_DRIVING,
                session_start=now,
                parked_at=parked_at,
            )
            log.info("Geofence exit: awaiting driving (snapshot=%s)", parked_at)
            return True

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------

    def user_moved_car(self) -> None:
        with self._lock:
            if self._session is not None:
                log.info("Manual move: abandoning %s session", self._session.phase.value)
            self._session = None
            self._invalidate_belief("user moved car")

    def user_set_initial_parking(self, coordinate: Coordinate, accuracy_m: float) -> ParkingEvent:
        with self._lock:
            if self._session is not None:
                log.info("Manual parking: abandoning %s session", self._session.phase.value)
            self._session = None
            event = ParkingEvent(coordinate=coordinate, accuracy_m=accuracy_m, timestamp=self.clock.now())
            self._park(event, "set by user")
            return event

    def restore(self, event: ParkingEvent) -> None:
        """Adopt a persisted belief at startup without emitting a decision."""
        with self._lock:
            self._belief = event
            self.geofence.register(event.coordinate)
            log.info("Restored parking at (%.6f, %.6f)",
                     event.coordinate.latitude, event.coordinate.longitude)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _expire(self, now: datetime) -> None:
        s = self._session
        if s is None:
            return
        elapsed = s.elapsed_s(now)
        if s.phase is TrackerState.AWAITING_DRIVING and elapsed > self.params.walking_timeout_s:
            # Walked away from the car; keep the current belief
            log.info("No driving after %.0fs; user walked away, parking kept", elapsed)
            self._session = None
        elif s.phase is TrackerState.AWAITING_STOP and elapsed > self.params.tracking_timeout_s:
            log.info("No sustained stop after %.0fs; waiting for a visit arrival", elapsed)
            self._session = None

    def _on_location(self, sample: LocationSample, now: datetime) -> None:
        s = self._session
        if s is None:
            return
        if s.phase is TrackerState.AWAITING_DRIVING:
            self._check_driving(s, sample, now)
        else:
            self._check_stop(s, sample)

    def _check_driving(self, s: TrackingSession, sample: LocationSample, now: datetime) -> None:
        p = self.params
        elapsed = s.elapsed_s(now)
        dist = haversine_m(sample.coordinate, s.parked_at) if s.parked_at is not None else None

        by_speed = sample.speed_mps > p.driving_speed_mps and (
            dist is None or dist <= p.driving_max_distance_m
        )
        by_distance = (
            dist is not None
            and elapsed > p.distance_warmup_s
            and dist > p.geofence_radius_m + elapsed * p.walking_speed_mps
        )
        log.debug("driving check t=%.0fs speed=%.1f dist=%s -> speed=%s distance=%s",
                  elapsed, sample.speed_mps, f"{dist:.0f}m" if dist is not None else "?",
                  by_speed, by_distance)
        if not (by_speed or by_distance):
            return

        self._session = replace(s, phase=TrackerState.AWAITING_STOP, driving_confirmed=True)
        log.info("Driving confirmed after %.0fs (%s); awaiting stop",
                 elapsed, "speed" if by_speed else "distance")
        self._invalidate_belief("driving away")

    def _check_stop(self, s: TrackingSession, sample: LocationSample) -> None:
        p = self.params
        if sample.speed_mps < 0:
            return

        if sample.speed_mps >= p.stopped_speed_mps:
            if s.stopped_since is not None:
                log.debug("Moving again at %.1f m/s; stop window reset", sample.speed_mps)
                self._session = replace(s, stopped_since=None, stopped_sample=None)
            return

        if s.stopped_since is None:
            s = replace(s, stopped_since=sample.timestamp, stopped_sample=sample)
            self._session = s

        dwell = (sample.timestamp - s.stopped_since).total_seconds()
        if dwell < p.stop_confirm_s:
            return

        # The window's first fix is closest to where the car actually stopped
        first = s.stopped_sample
        self._session = None
        self._park(
            ParkingEvent(
                coordinate=first.coordinate,
                accuracy_m=first.horizontal_accuracy_m,
                timestamp=first.timestamp,
            ),
            f"stopped {dwell:.0f}s",
        )

    def _on_visit(self, visit: VisitEvent, now: datetime) -> None:
        if visit.departure is not None and visit.departure <= now:
            log.info("Visit departure ignored; driving detection owns departures")
            return
        if self._session is not None:
            log.info("Visit arrival ignored while %s", self._session.phase.value)
            return
        if not self._recently_driving(visit.arrival):
            log.info("Visit arrival without recent driving; not a parking event")
            return
        self._park(
            ParkingEvent(coordinate=visit.coordinate, accuracy_m=visit.accuracy_m, timestamp=visit.arrival),
            "visit arrival",
        )

    def _recently_driving(self, before: datetime) -> bool:
        if self.motion is None:
            return True
        try:
            result = self.motion.was_recently_driving(before, self.params.visit_driving_lookback)
        except Exception as exc:
            log.warning("Motion activity unavailable (%s); assuming driving", exc)
            return True
        # Unknown counts as driving
        return True if result is None else result

    def _park(self, event: ParkingEvent, reason: str) -> None:
        self._belief = event
        self.geofence.register(event.coordinate)
        log.info("Parked at (%.6f, %.6f) ±%.0fm [%s]",
                 event.coordinate.latitude, event.coordinate.longitude, event.accuracy_m, reason)
        self.listener.on_parked(event)

    def _invalidate_belief(self, reason: str) -> None:
        self._belief = None
        self.geofence.clear()
        log.info("Parking invalidated [%s]", reason)
        self.listener.on_departed()
