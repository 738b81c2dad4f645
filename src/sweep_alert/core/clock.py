from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in the configured local timezone."""

    def __init__(self, tz_name: Optional[str] = None):
        if tz_name is None:
            from sweep_alert.config import settings

            tz_name = settings.timezone
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class ManualClock:
    """Clock that only moves when told to (trace replay, tests)."""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now
