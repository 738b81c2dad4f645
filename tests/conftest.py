from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

import pytest

from sweep_alert.contracts.events import LocationUpdate
from sweep_alert.core.clock import ManualClock
from sweep_alert.core.geofence import GeofenceController, InMemoryGeofenceHost
from sweep_alert.core.models import Coordinate, LocationSample, ParkingEvent, ScheduleRecord
from sweep_alert.core.tracker import ParkingTracker

SF = ZoneInfo("America/Los_Angeles")

# Monday
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=SF)

PARKED = Coordinate(latitude=37.7600, longitude=-122.4200)

# One degree of latitude is ~111.2 km
M_PER_DEG_LAT = 111_195.0


def north_of(c: Coordinate, meters: float) -> Coordinate:
    return Coordinate(latitude=c.latitude + meters / M_PER_DEG_LAT, longitude=c.longitude)


# East-west street through PARKED (constant latitude)
EW_STREET = [[Coordinate(37.7600, -122.4230), Coordinate(37.7600, -122.4170)]]


def make_record(
    weekday: str = "Tues",
    fromhour: str = "8",
    weeks=(1, 1, 1, 1, 1),
    blockside: str = "North",
    geometry=None,
    corridor: str = "Test St",
) -> ScheduleRecord:
    return ScheduleRecord(
        corridor=corridor,
        limits="A St  -  B St",
        blockside=blockside,
        weekday=weekday,
        fromhour=fromhour,
        tohour=str((int(fromhour) + 2) if fromhour.isdigit() else ""),
        week1=str(weeks[0]),
        week2=str(weeks[1]),
        week3=str(weeks[2]),
        week4=str(weeks[3]),
        week5=str(weeks[4]),
        geometry=geometry or [],
    )


class InlineExecutor:
    """Runs submitted lookups on the caller's thread."""

    def submit(self, fn, *args):
        fn(*args)


class RecordingListener:
    def __init__(self) -> None:
        self.decisions: List[object] = []

    def on_parked(self, event: ParkingEvent) -> None:
        self.decisions.append(event)

    def on_departed(self) -> None:
        self.decisions.append("departed")

    @property
    def parked(self) -> List[ParkingEvent]:
        return [d for d in self.decisions if isinstance(d, ParkingEvent)]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def geofence() -> GeofenceController:
    return GeofenceController(InMemoryGeofenceHost())


@pytest.fixture
def tracker(listener, geofence, clock) -> ParkingTracker:
    t = ParkingTracker(listener=listener, geofence=geofence, clock=clock)
    t.restore(ParkingEvent(coordinate=PARKED, accuracy_m=10.0, timestamp=T0 - timedelta(hours=2)))
    return t


def feed(
    tracker: ParkingTracker,
    clock: ManualClock,
    t_s: float,
    coord: Coordinate,
    speed: float,
    accuracy: float = 5.0,
    start: Optional[datetime] = None,
) -> LocationSample:
    """Move the clock to ``start + t_s`` and deliver one fix stamped at that time."""
    when = (start or T0) + timedelta(seconds=t_s)
    clock.set(when)
    sample = LocationSample(coordinate=coord, horizontal_accuracy_m=accuracy, speed_mps=speed, timestamp=when)
    tracker.handle(LocationUpdate(sample))
    return sample
