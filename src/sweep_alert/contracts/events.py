"""Messages pushed into the tracker by the host location subsystem, and the
callback surfaces the tracker talks to."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Union

from sweep_alert.core.models import Coordinate, LocationSample, ParkingEvent


@dataclass(frozen=True)
class LocationUpdate:
    sample: LocationSample


@dataclass(frozen=True)
class VisitEvent:
    """Coarse arrival/departure signal.

    ``departure`` is None (or in the future) while the visit is still open,
    i.e. the user has just arrived.
    """
    coordinate: Coordinate
    accuracy_m: float
    arrival: datetime
    departure: Optional[datetime] = None


@dataclass(frozen=True)
class RegionExited:
    identifier: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RegionEntered:
    identifier: str
    timestamp: Optional[datetime] = None


TrackerEvent = Union[LocationUpdate, VisitEvent, RegionExited, RegionEntered]


class ParkingListener(Protocol):
    """Receives the tracker's decisions, exactly one per physical event."""

    def on_parked(self, event: ParkingEvent) -> None: ...

    def on_departed(self) -> None: ...


class MotionHint(Protocol):
    """Activity classifier: was the user in a vehicle shortly before *before*?

    Returns None when the classifier is unavailable.
    """

    def was_recently_driving(self, before: datetime, lookback: timedelta) -> Optional[bool]: ...
