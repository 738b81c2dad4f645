"""Reacts to tracker decisions: persistence, schedule lookup and reminders."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sweep_alert.contracts.events import MotionHint
from sweep_alert.core.clock import Clock, SystemClock
from sweep_alert.core.geofence import GeofenceController, GeofenceHost, InMemoryGeofenceHost
from sweep_alert.core.models import ParkingEvent
from sweep_alert.core.schedule import resolve_next_cleaning
from sweep_alert.core.tracker import ParkingTracker, TrackerParams
from sweep_alert.notify.reminders import InMemoryReminderScheduler, ReminderScheduler
from sweep_alert.providers.base import ScheduleSource, ScheduleSourceError
from sweep_alert.storage.store import ParkingStore

log = logging.getLogger(__name__)


class ParkingService:
    """ParkingListener that persists the spot and schedules the warning.

    Every decision bumps a generation counter.  A schedule lookup started for
    an older generation is dropped when it completes, so a slow fetch can never
    re-arm a reminder for a car that has since moved.
    """

    def __init__(
        self,
        store: ParkingStore,
        reminders: ReminderScheduler,
        source: ScheduleSource,
        clock: Clock,
        executor: Optional[Executor] = None,
        reminder_lead: timedelta = timedelta(minutes=60),
    ):
        self.store = store
        self.reminders = reminders
        self.source = source
        self.clock = clock
        self.executor = executor
        self.reminder_lead = reminder_lead
        self.next_cleaning: Optional[datetime] = None
        self._generation = 0
        self._gen_lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def _bump(self) -> int:
        with self._gen_lock:
            self._generation += 1
            self.next_cleaning = None
            return self._generation

    def on_parked(self, event: ParkingEvent) -> None:
        gen = self._bump()
        self.reminders.cancel_all()
        if not self.store.save(event.coordinate, event.accuracy_m, event.timestamp):
            log.warning("Parking location not persisted; continuing with in-memory belief")
        self.reminders.notify_now(
            "Parked",
            f"({event.coordinate.latitude:.6f}, {event.coordinate.longitude:.6f}) "
            f"with accuracy {event.accuracy_m:.0f}m",
        )
        reference = self.clock.now()
        if self.executor is not None:
            self.executor.submit(self.refresh_reminder, event, gen, reference)
        else:
            self.refresh_reminder(event, gen, reference)

    def reminder_time(self, cleaning: datetime) -> datetime:
        # The lead is elapsed time; wall-clock subtraction is an hour off across DST
        fire_at = cleaning.astimezone(timezone.utc) - self.reminder_lead
        return fire_at.astimezone(cleaning.tzinfo)

    def on_departed(self) -> None:
        self._bump()
        self.reminders.cancel_all()
        if not self.store.clear():
            log.warning("Persisted parking location could not be cleared")

    def refresh_reminder(
        self, event: ParkingEvent, generation: int, reference: Optional[datetime] = None
    ) -> Optional[datetime]:
        """Fetch schedules near *event* and arm the reminder if still current.

        *reference* is the decision time the next cleaning is resolved from;
        it defaults to the moment the lookup completes.
        """
        try:
            schedules = self.source.get_schedules(event.coordinate, event.accuracy_m)
        except ScheduleSourceError as exc:
            log.warning("Schedule lookup failed: %s", exc)
            return None

        now = self.clock.now()
        nxt = resolve_next_cleaning(schedules, event.coordinate, reference or now)

        with self._gen_lock:
            if generation != self._generation:
                log.info("Discarding schedule result for superseded parking (gen %d, now %d)",
                         generation, self._generation)
                return None
            if nxt is None:
                log.info("No upcoming street cleaning found among %d schedule(s)", len(schedules))
                return None

            fire_at = self.reminder_time(nxt)
            if fire_at < now:
                fire_at = now
            try:
                self.reminders.schedule_one_shot("Move your car!", "Street cleaning starts soon", fire_at)
            except Exception as exc:
                log.error("Scheduling reminder failed: %s", exc)
                return None
            self.next_cleaning = nxt
            log.info("Next street cleaning %s; reminder at %s", nxt.isoformat(), fire_at.isoformat())
            return nxt


@dataclass
class Runtime:
    tracker: ParkingTracker
    service: ParkingService
    geofence: GeofenceController
    store: ParkingStore
    reminders: ReminderScheduler
    source: ScheduleSource
    clock: Clock
    # Set only when build_runtime created the executor itself
    executor: Optional[ThreadPoolExecutor] = field(default=None, repr=False)

    def close(self, wait: bool = True) -> None:
        """Stop the lookup worker; with *wait*, pending lookups finish first."""
        if self.executor is not None:
            self.executor.shutdown(wait=wait)
            self.executor = None


def build_runtime(
    store: Optional[ParkingStore] = None,
    reminders: Optional[ReminderScheduler] = None,
    source: Optional[ScheduleSource] = None,
    clock: Optional[Clock] = None,
    geofence_host: Optional[GeofenceHost] = None,
    motion: Optional[MotionHint] = None,
    params: Optional[TrackerParams] = None,
    executor: Optional[Executor] = None,
) -> Runtime:
    """Wire the tracker to its collaborators; missing ones get defaults.

    Schedule lookups run on a single background worker unless *executor* is
    given, so the network fetch never runs inside the tracker lock.  Call
    ``Runtime.close()`` to stop that worker.

    A persisted parking spot is restored into the tracker (and its geofence)
    without re-running the reminder pipeline.
    """
    from sweep_alert.config import settings

    if store is None:
        from sweep_alert.storage.store import build_store

        store = build_store()
    if source is None:
        from sweep_alert.providers.sfgov import SFGovScheduleSource

        source = SFGovScheduleSource()
    reminders = reminders or InMemoryReminderScheduler()
    clock = clock or SystemClock()
    geofence = GeofenceController(geofence_host or InMemoryGeofenceHost())
    owned_executor = None
    if executor is None:
        owned_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sweep-alert-lookup")
        executor = owned_executor

    service = ParkingService(
        store=store,
        reminders=reminders,
        source=source,
        clock=clock,
        executor=executor,
        reminder_lead=timedelta(minutes=settings.reminder_lead_minutes),
    )
    tracker = ParkingTracker(listener=service, geofence=geofence, clock=clock, motion=motion, params=params)

    saved = store.load()
    if saved is not None:
        # Older values carry no parking time; the restore time stands in
        parked_at = saved.parked_at or clock.now()
        tracker.restore(ParkingEvent(coordinate=saved.coordinate, accuracy_m=saved.accuracy_m, timestamp=parked_at))

    return Runtime(
        tracker=tracker,
        service=service,
        geofence=geofence,
        store=store,
        reminders=reminders,
        source=source,
        clock=clock,
        executor=owned_executor,
    )
