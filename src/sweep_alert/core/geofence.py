"""Keeps at most one circular region registered around the parked car."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Set

from sweep_alert.core.models import (
    GEOFENCE_IDENTIFIER,
    GEOFENCE_RADIUS_M,
    Coordinate,
    GeofenceRegion,
)

log = logging.getLogger(__name__)


class GeofenceHost(ABC):
    """Host location subsystem that raises enter/exit signals for regions."""

    @abstractmethod
    def monitor(self, region: GeofenceRegion) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop_monitoring(self, region: GeofenceRegion) -> None:
        raise NotImplementedError

    @abstractmethod
    def currently_monitored(self) -> Set[GeofenceRegion]:
        raise NotImplementedError


class InMemoryGeofenceHost(GeofenceHost):
    """Region bookkeeping only; exits are reported by whoever drives the host."""

    def __init__(self) -> None:
        self._regions: Set[GeofenceRegion] = set()

    def monitor(self, region: GeofenceRegion) -> None:
        self._regions.add(region)

    def stop_monitoring(self, region: GeofenceRegion) -> None:
        self._regions.discard(region)

    def currently_monitored(self) -> Set[GeofenceRegion]:
        return set(self._regions)


class GeofenceController:
    def __init__(self, host: GeofenceHost, radius_m: float = GEOFENCE_RADIUS_M):
        self.host = host
        self.radius_m = radius_m

    @property
    def active(self) -> Optional[GeofenceRegion]:
        for region in self.host.currently_monitored():
            if region.identifier == GEOFENCE_IDENTIFIER:
                return region
        return None

    def register(self, center: Coordinate) -> GeofenceRegion:
        """Monitor a new region around *center*, replacing any previous one."""
        self.clear()
        region = GeofenceRegion(center=center, radius_m=self.radius_m)
        self.host.monitor(region)
        log.info("Geofence registered at (%.6f, %.6f) r=%.0fm",
                 center.latitude, center.longitude, self.radius_m)
        return region

    def clear(self) -> None:
        for region in self.host.currently_monitored():
            if region.identifier == GEOFENCE_IDENTIFIER:
                self.host.stop_monitoring(region)
                log.info("Geofence cleared at (%.6f, %.6f)",
                         region.center.latitude, region.center.longitude)

    def owns(self, identifier: str) -> bool:
        return identifier == GEOFENCE_IDENTIFIER
