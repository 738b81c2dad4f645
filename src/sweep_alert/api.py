"""FastAPI surface for the host app: location events in, parking state out."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from sweep_alert.contracts.events import LocationUpdate, RegionEntered, RegionExited, VisitEvent
from sweep_alert.core.models import GEOFENCE_IDENTIFIER, Coordinate, LocationSample
from sweep_alert.core.schedule import resolve_candidates, soonest
from sweep_alert.core.service import Runtime, build_runtime
from sweep_alert.logsink import DebugLogBuffer, install_debug_log
from sweep_alert.providers.base import ScheduleSourceError

log = logging.getLogger(__name__)

# Buffer attached at import; it covers everything logged since startup
install_debug_log()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _runtime
    yield
    if _runtime is not None:
        _runtime.close(wait=False)
        _runtime = None


app = FastAPI(title="Sweep Alert", version="0.1.0", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Module-level singletons (overridden in tests via dependency_overrides)
# ---------------------------------------------------------------------------
_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def get_log_buffer() -> DebugLogBuffer:
    return install_debug_log()


def _localize(rt: Runtime, when: Optional[datetime]) -> datetime:
    now = rt.clock.now()
    if when is None:
        return now
    if when.tzinfo is None:
        return when.replace(tzinfo=now.tzinfo)
    return when


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class LocationIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_m: float = 10.0
    speed_mps: float = Field(default=-1.0, description="-1 when unknown")
    timestamp: Optional[datetime] = None


class VisitIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_m: float = 50.0
    arrival: Optional[datetime] = None
    departure: Optional[datetime] = None


class RegionIn(BaseModel):
    identifier: str = GEOFENCE_IDENTIFIER


class InitialParkingIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_m: float = 10.0


class ParkingOut(BaseModel):
    lat: float
    lon: float
    accuracy_m: float
    timestamp: datetime


class StateOut(BaseModel):
    state: str
    parking: Optional[ParkingOut] = None
    next_cleaning: Optional[datetime] = None
    geofence_active: bool = False


class CandidateOut(BaseModel):
    corridor: str
    limits: str
    blockside: str
    weekday: str
    fromhour: str
    tohour: str
    distance_m: Optional[float] = None
    next_cleaning: Optional[datetime] = None


class NextCleaningOut(BaseModel):
    next_cleaning: Optional[datetime] = None
    candidates: List[CandidateOut] = []


def _state(rt: Runtime) -> StateOut:
    belief = rt.tracker.belief
    parking = None
    if belief is not None:
        parking = ParkingOut(
            lat=belief.coordinate.latitude,
            lon=belief.coordinate.longitude,
            accuracy_m=belief.accuracy_m,
            timestamp=belief.timestamp,
        )
    return StateOut(
        state=rt.tracker.state.value,
        parking=parking,
        next_cleaning=rt.service.next_cleaning,
        geofence_active=rt.geofence.active is not None,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    redis_ok = False
    try:
        from sweep_alert.cache.redis_client import get_redis
        r = get_redis()
        if r is not None:
            r.ping()
            redis_ok = True
    except Exception as exc:
        log.debug("health: redis ping failed: %s", exc)
    return {"status": "ok", "redis": redis_ok}


@app.get("/parking", response_model=StateOut)
def parking_state(rt: Runtime = Depends(get_runtime)):
    return _state(rt)


@app.post("/events/location", response_model=StateOut)
def location_event(req: LocationIn, rt: Runtime = Depends(get_runtime)):
    sample = LocationSample(
        coordinate=Coordinate(latitude=req.lat, longitude=req.lon),
        horizontal_accuracy_m=req.accuracy_m,
        speed_mps=req.speed_mps,
        timestamp=_localize(rt, req.timestamp),
    )
    rt.tracker.handle(LocationUpdate(sample=sample))
    return _state(rt)


@app.post("/events/visit", response_model=StateOut)
def visit_event(req: VisitIn, rt: Runtime = Depends(get_runtime)):
    rt.tracker.handle(
        VisitEvent(
            coordinate=Coordinate(latitude=req.lat, longitude=req.lon),
            accuracy_m=req.accuracy_m,
            arrival=_localize(rt, req.arrival),
            departure=_localize(rt, req.departure) if req.departure is not None else None,
        )
    )
    return _state(rt)


@app.post("/events/region-exit", response_model=StateOut)
def region_exit(req: RegionIn, rt: Runtime = Depends(get_runtime)):
    rt.tracker.handle(RegionExited(identifier=req.identifier, timestamp=rt.clock.now()))
    return _state(rt)


@app.post("/events/region-enter", response_model=StateOut)
def region_enter(req: RegionIn, rt: Runtime = Depends(get_runtime)):
    rt.tracker.handle(RegionEntered(identifier=req.identifier, timestamp=rt.clock.now()))
    return _state(rt)


@app.post("/parking/moved", response_model=StateOut)
def moved_car(rt: Runtime = Depends(get_runtime)):
    rt.tracker.user_moved_car()
    return _state(rt)


@app.post("/parking/initial", response_model=StateOut)
def initial_parking(req: InitialParkingIn, rt: Runtime = Depends(get_runtime)):
    rt.tracker.user_set_initial_parking(Coordinate(latitude=req.lat, longitude=req.lon), req.accuracy_m)
    return _state(rt)


@app.get("/next-cleaning", response_model=NextCleaningOut)
def next_cleaning(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_m: float = Query(default=100.0, gt=0),
    at: Optional[datetime] = None,
    rt: Runtime = Depends(get_runtime),
):
    point = Coordinate(latitude=lat, longitude=lon)
    try:
        schedules = rt.source.get_schedules(point, radius_m)
    except ScheduleSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    candidates = resolve_candidates(schedules, point, _localize(rt, at))
    return NextCleaningOut(
        next_cleaning=soonest(candidates),
        candidates=[
            CandidateOut(
                corridor=c.record.corridor,
                limits=c.record.limits,
                blockside=c.record.blockside,
                weekday=c.record.weekday,
                fromhour=c.record.fromhour,
                tohour=c.record.tohour,
                distance_m=c.distance_m,
                next_cleaning=c.next_cleaning,
            )
            for c in candidates
        ],
    )


@app.get("/logs", response_class=PlainTextResponse)
def export_logs(buf: DebugLogBuffer = Depends(get_log_buffer)):
    return buf.export_text()


@app.delete("/logs", status_code=204)
def clear_logs(buf: DebugLogBuffer = Depends(get_log_buffer)):
    buf.clear()
