from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationSample:
    """One fix from the location provider.

    ``speed_mps`` is -1 when the provider could not determine it.
    """
    coordinate: Coordinate
    horizontal_accuracy_m: float
    speed_mps: float
    timestamp: datetime


@dataclass(frozen=True)
class ParkingEvent:
    coordinate: Coordinate
    accuracy_m: float
    timestamp: datetime


GEOFENCE_IDENTIFIER = "parking_geofence"
GEOFENCE_RADIUS_M = 50.0


@dataclass(frozen=True)
class GeofenceRegion:
    center: Coordinate
    radius_m: float = GEOFENCE_RADIUS_M
    identifier: str = GEOFENCE_IDENTIFIER


def _flag(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if not isinstance(v, (str, int, float)):
        raise ValueError(f"expected a 0/1 flag, got {type(v).__name__}")
    return str(v).strip().lower() in ("1", "true", "yes", "y")


class ScheduleRecord(BaseModel):
    """One published street-cleaning rule for one side of one block."""

    model_config = {"frozen": True}

    corridor: str = ""
    limits: str = ""
    blockside: str = ""
    weekday: str = ""
    fromhour: str = ""
    tohour: str = ""
    week1: bool = False
    week2: bool = False
    week3: bool = False
    week4: bool = False
    week5: bool = False
    holidays: bool = False

    # One list per constituent line; empty when the row had no geometry
    geometry: List[List[Coordinate]] = Field(default_factory=list)

    @field_validator("week1", "week2", "week3", "week4", "week5", "holidays", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return _flag(v)

    @field_validator("corridor", "limits", "blockside", "weekday", "fromhour", "tohour", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        if v is None:
            return ""
        if not isinstance(v, (str, int, float)):
            raise ValueError(f"expected text, got {type(v).__name__}")
        return str(v).strip()

    @property
    def active_weeks(self) -> List[int]:
        flags = [self.week1, self.week2, self.week3, self.week4, self.week5]
        return [i + 1 for i, on in enumerate(flags) if on]

    @property
    def has_geometry(self) -> bool:
        return any(self.geometry)

    def label(self) -> str:
        side = f" ({self.blockside} side)" if self.blockside else ""
        return f"{self.corridor} {self.limits}{side}".strip()


class CleaningCandidate(BaseModel):
    """A schedule that survived proximity/side filtering, with its own next run."""

    record: ScheduleRecord
    distance_m: Optional[float] = None
    next_cleaning: Optional[datetime] = None
