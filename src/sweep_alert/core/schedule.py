"""Match a parked coordinate to street-cleaning rules and find the next run."""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from sweep_alert.core.models import CleaningCandidate, Coordinate, ScheduleRecord
from sweep_alert.geo.geometry import closest_point_on_polyline

log = logging.getLogger(__name__)


# ----- matching thresholds -----
NEARBY_TOLERANCE_M = 20.0  # centerline offset + near-parallel adjacent segments
AMBIGUOUS_SIDE_M = 5.0     # closer than this to the centerline -> side unknown

# A weekday pattern with up to five flagged occurrences repeats within 5 weeks
SCAN_DAYS = 35

_WEEKDAYS = {
    "mon": 0, "monday": 0,
    "tue": 1, "tues": 1, "tuesday": 1,
    "wed": 2, "weds": 2, "wednesday": 2,
    "thu": 3, "thur": 3, "thurs": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}


def parse_weekday(text: str) -> Optional[int]:
    """Dataset weekday name -> ``date.weekday()`` number (Mon=0), or None."""
    return _WEEKDAYS.get(text.strip().lower().rstrip("."))


def parse_hour(text: str) -> Optional[int]:
    """Accepts ``"8"``, ``"08"`` or ``"08:00"``."""
    head = text.strip().split(":", 1)[0]
    try:
        hour = int(head)
    except ValueError:
        return None
    if not 0 <= hour <= 23:
        return None
    return hour


def week_of_month(day: int) -> int:
    """1st..5th occurrence of that weekday within its month."""
    return (day - 1) // 7 + 1


def next_occurrence(record: ScheduleRecord, reference: datetime) -> Optional[datetime]:
    """First cleaning start strictly after *reference*, or None.

    Walks the calendar of *reference*'s own timezone, day by day, from the
    reference date through 35 days later.  Unparseable weekday or hour yields
    None.
    """
    target = parse_weekday(record.weekday)
    hour = parse_hour(record.fromhour)
    if target is None or hour is None:
        log.debug("Unparseable schedule %r weekday=%r fromhour=%r",
                  record.label(), record.weekday, record.fromhour)
        return None

    weeks = set(record.active_weeks)
    if not weeks:
        return None

    start = reference.date()
    for offset in range(SCAN_DAYS + 1):
        day = start + timedelta(days=offset)
        if day.weekday() != target:
            continue
        if week_of_month(day.day) not in weeks:
            continue
        candidate = datetime.combine(day, time(hour=hour), tzinfo=reference.tzinfo)
        # Today's window may already have started
        if candidate > reference:
            return candidate
    return None


def side_of_centerline(point: Coordinate, nearest: Coordinate) -> str:
    """Blockside of *point* relative to its projection on the centerline.

    Dominant-axis approximation: fine for grid-aligned streets, unreliable on
    diagonals.
    """
    dlat = point.latitude - nearest.latitude
    dlon = point.longitude - nearest.longitude
    if abs(dlat) > abs(dlon):
        return "North" if dlat > 0 else "South"
    return "East" if dlon > 0 else "West"


def select_candidates(
    schedules: Sequence[ScheduleRecord], point: Coordinate
) -> List[CleaningCandidate]:
    """Narrow *schedules* to the street and side the car is most likely on.

    - Rows without geometry are only used when no row has geometry.
    - Keeps rows within ``min distance + 20 m`` of the point.
    - Within 5 m of the nearest centerline the side is ambiguous and every
      kept row is returned.
    - Otherwise keeps rows whose blockside matches; falls back to every kept
      row when none does.
    """
    measured: List[Tuple[ScheduleRecord, float, Coordinate]] = []
    for rec in schedules:
        if not rec.has_geometry:
            continue
        hit = closest_point_on_polyline(point, rec.geometry)
        if hit is not None:
            measured.append((rec, hit[0], hit[1]))

    if not measured:
        return [CleaningCandidate(record=rec) for rec in schedules]

    min_dist = min(d for _, d, _ in measured)
    kept = [m for m in measured if m[1] <= min_dist + NEARBY_TOLERANCE_M]
    all_kept = [CleaningCandidate(record=rec, distance_m=d) for rec, d, _ in kept]

    _, nearest_dist, nearest_pt = min(kept, key=lambda m: m[1])
    if nearest_dist < AMBIGUOUS_SIDE_M:
        log.info("Point %.1fm from centerline; side ambiguous, keeping %d schedule(s)",
                 nearest_dist, len(all_kept))
        return all_kept

    side = side_of_centerline(point, nearest_pt)
    sided = [c for c in all_kept if c.record.blockside.lower() == side.lower()]
    if not sided:
        log.warning("No schedule on the %s side among %d nearby; using all", side, len(all_kept))
        return all_kept
    return sided


def resolve_candidates(
    schedules: Sequence[ScheduleRecord], point: Coordinate, reference: datetime
) -> List[CleaningCandidate]:
    """``select_candidates`` with each row's own next occurrence filled in."""
    return [
        c.model_copy(update={"next_cleaning": next_occurrence(c.record, reference)})
        for c in select_candidates(schedules, point)
    ]


def soonest(candidates: Iterable[CleaningCandidate]) -> Optional[datetime]:
    times = [c.next_cleaning for c in candidates if c.next_cleaning is not None]
    return min(times) if times else None


def resolve_next_cleaning(
    schedules: Sequence[ScheduleRecord], point: Coordinate, reference: datetime
) -> Optional[datetime]:
    """Soonest upcoming cleaning that applies to a car parked at *point*."""
    return soonest(resolve_candidates(schedules, point, reference))
