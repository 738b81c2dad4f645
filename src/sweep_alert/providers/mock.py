from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from sweep_alert.core.models import Coordinate, ScheduleRecord
from sweep_alert.geo.geometry import closest_point_on_polyline
from sweep_alert.providers.base import ScheduleSource, ScheduleSourceError


class InMemoryScheduleSource(ScheduleSource):
    """
    Serves a fixed set of rows so the pipeline runs without the network.
    Mirrors the remote radius query: rows without geometry always match.
    Set ``fail`` to simulate an outage.
    """

    def __init__(self, records: Iterable[ScheduleRecord] = (), min_radius_m: float = 100.0):
        self.records: List[ScheduleRecord] = list(records)
        self.min_radius_m = min_radius_m
        self.fail: Optional[Exception] = None
        self.calls: List[Tuple[Coordinate, float]] = []

    def get_schedules(self, center: Coordinate, radius_m: float) -> list[ScheduleRecord]:
        radius = max(float(radius_m), self.min_radius_m)
        self.calls.append((center, radius))
        if self.fail is not None:
            raise ScheduleSourceError(str(self.fail)) from self.fail

        out = []
        for rec in self.records:
            if not rec.has_geometry:
                out.append(rec)
                continue
            hit = closest_point_on_polyline(center, rec.geometry)
            if hit is not None and hit[0] <= radius:
                out.append(rec)
        return out
