from __future__ import annotations

from abc import ABC, abstractmethod

from sweep_alert.core.models import Coordinate, ScheduleRecord


class ScheduleSourceError(RuntimeError):
    """Transient failure fetching schedule rows (network, HTTP, decoding)."""


class ScheduleSource(ABC):
    """Fetch raw street-cleaning rows whose centerline passes near a point."""

    @abstractmethod
    def get_schedules(self, center: Coordinate, radius_m: float) -> list[ScheduleRecord]:
        raise NotImplementedError
