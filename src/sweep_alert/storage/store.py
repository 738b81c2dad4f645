"""Persistence of the last known parking coordinate.

Store calls report success/failure and never raise; a broken backend must not
leave the tracker half-updated.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import NamedTuple, Optional

from sweep_alert.cache import keys
from sweep_alert.core.models import Coordinate

log = logging.getLogger(__name__)


class SavedParking(NamedTuple):
    coordinate: Coordinate
    accuracy_m: float
    # None for values written without a parking time
    parked_at: Optional[datetime] = None


class ParkingStore(ABC):
    @abstractmethod
    def save(self, coordinate: Coordinate, accuracy_m: float, parked_at: Optional[datetime] = None) -> bool:
        raise NotImplementedError

    @abstractmethod
    def load(self) -> Optional[SavedParking]:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> bool:
        raise NotImplementedError


class MemoryParkingStore(ParkingStore):
    def __init__(self) -> None:
        self._value: Optional[SavedParking] = None

    def save(self, coordinate: Coordinate, accuracy_m: float, parked_at: Optional[datetime] = None) -> bool:
        self._value = SavedParking(coordinate, float(accuracy_m), parked_at)
        return True

    def load(self) -> Optional[SavedParking]:
        return self._value

    def clear(self) -> bool:
        self._value = None
        return True


class RedisParkingStore(ParkingStore):
    """Single JSON value ``{"lat", "long", "accuracy", "timestamp"}`` under one key."""

    def __init__(self, client, key: Optional[str] = None):
        self.r = client
        self.key = key or keys.parked_location()

    def save(self, coordinate: Coordinate, accuracy_m: float, parked_at: Optional[datetime] = None) -> bool:
        payload = {"lat": coordinate.latitude, "long": coordinate.longitude, "accuracy": accuracy_m}
        if parked_at is not None:
            payload["timestamp"] = parked_at.isoformat()
        try:
            self.r.set(self.key, json.dumps(payload))
            return True
        except Exception as exc:
            log.warning("Saving parking location failed: %s", exc)
            return False

    def load(self) -> Optional[SavedParking]:
        try:
            raw = self.r.get(self.key)
        except Exception as exc:
            log.warning("Loading parking location failed: %s", exc)
            return None
        if raw is None:
            return None
        try:
            d = json.loads(raw)
            coord = Coordinate(latitude=float(d["lat"]), longitude=float(d["long"]))
            ts = d.get("timestamp")
            parked_at = datetime.fromisoformat(ts) if ts else None
            return SavedParking(coord, float(d.get("accuracy", 0.0)), parked_at)
        except (ValueError, KeyError, TypeError) as exc:
            log.warning("Stored parking location unreadable (%s); ignoring", exc)
            return None

    def clear(self) -> bool:
        try:
            self.r.delete(self.key)
            return True
        except Exception as exc:
            log.warning("Clearing parking location failed: %s", exc)
            return False


def build_store() -> ParkingStore:
    """Redis-backed when configured and reachable, in-memory otherwise."""
    from sweep_alert.cache.redis_client import get_redis

    r = get_redis()
    if r is None:
        return MemoryParkingStore()
    return RedisParkingStore(r)
