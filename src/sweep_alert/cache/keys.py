"""Redis key naming conventions for sweep-alert."""
from __future__ import annotations

_PREFIX = "sa"


def schedules(lat: float, lon: float, radius_m: float) -> str:
    """Raw schedule rows for a within_circle query (~10 m grid)."""
    return f"{_PREFIX}:schedules:{lat:.4f},{lon:.4f}:{radius_m:.0f}"


def parked_location() -> str:
    return f"{_PREFIX}:parking:location"
