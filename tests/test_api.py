from __future__ import annotations

import logging
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from sweep_alert.api import app, get_log_buffer, get_runtime
from sweep_alert.core.clock import ManualClock
from sweep_alert.core.service import build_runtime
from sweep_alert.logsink import DebugLogBuffer
from sweep_alert.providers.mock import InMemoryScheduleSource
from sweep_alert.storage.store import MemoryParkingStore
from tests.conftest import EW_STREET, PARKED, T0, InlineExecutor, make_record, north_of


@pytest.fixture
def rt():
    source = InMemoryScheduleSource(
        [
            make_record(weekday="Tues", blockside="North", geometry=EW_STREET),
            make_record(weekday="Thu", blockside="South", geometry=EW_STREET),
        ]
    )
    return build_runtime(
        store=MemoryParkingStore(), source=source, clock=ManualClock(T0), executor=InlineExecutor()
    )


@pytest.fixture
def buf():
    b = DebugLogBuffer(max_entries=50)
    lg = logging.getLogger("sweep_alert")
    lg.addHandler(b)
    old = lg.level
    lg.setLevel(logging.INFO)
    yield b
    lg.removeHandler(b)
    lg.setLevel(old)


@pytest.fixture
def client(rt, buf):
    app.dependency_overrides[get_runtime] = lambda: rt
    app.dependency_overrides[get_log_buffer] = lambda: buf
    yield TestClient(app)
    app.dependency_overrides.clear()


def _loc(rt, t_s, coord, speed):
    rt.clock.set(T0 + timedelta(seconds=t_s))
    return {"lat": coord.latitude, "lon": coord.longitude, "speed_mps": speed, "accuracy_m": 6.0}


def test_initial_parking_then_state(client):
    spot = north_of(PARKED, 10)
    r = client.post("/parking/initial", json={"lat": spot.latitude, "lon": spot.longitude, "accuracy_m": 5})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "idle"
    assert body["parking"]["lat"] == pytest.approx(spot.latitude)
    assert body["geofence_active"] is True
    assert body["next_cleaning"].startswith("2026-03-03T08:00")

    assert client.get("/parking").json() == body


def test_drive_and_park_through_events(client, rt):
    client.post("/parking/initial", json={"lat": PARKED.latitude, "lon": PARKED.longitude})
    r = client.post("/events/region-exit", json={})
    assert r.json()["state"] == "awaiting_driving"

    r = client.post("/events/location", json=_loc(rt, 5, north_of(PARKED, 100), 8.0))
    assert r.json()["state"] == "awaiting_stop"
    assert r.json()["parking"] is None

    spot = north_of(PARKED, -10)
    for i in range(31):
        r = client.post("/events/location", json=_loc(rt, 600 + i, spot, 0.5))
    body = r.json()
    assert body["state"] == "idle"
    assert body["parking"]["lat"] == pytest.approx(spot.latitude)
    assert body["next_cleaning"].startswith("2026-03-05T08:00")


def test_moved_clears_parking(client):
    client.post("/parking/initial", json={"lat": PARKED.latitude, "lon": PARKED.longitude})
    body = client.post("/parking/moved").json()
    assert body["parking"] is None
    assert body["geofence_active"] is False


def test_visit_arrival_parks(client):
    body = client.post("/events/visit", json={"lat": 37.761, "lon": -122.42, "accuracy_m": 30}).json()
    assert body["parking"]["accuracy_m"] == 30


def test_next_cleaning_lookup(client):
    spot = north_of(PARKED, 10)
    r = client.get("/next-cleaning", params={"lat": spot.latitude, "lon": spot.longitude})
    assert r.status_code == 200
    body = r.json()
    assert body["next_cleaning"].startswith("2026-03-03T08:00")
    assert [c["blockside"] for c in body["candidates"]] == ["North"]


def test_next_cleaning_upstream_failure_is_502(client, rt):
    rt.source.fail = ConnectionError("offline")
    r = client.get("/next-cleaning", params={"lat": 37.76, "lon": -122.42})
    assert r.status_code == 502


def test_bad_coordinates_rejected(client):
    assert client.post("/events/location", json={"lat": 123, "lon": 0}).status_code == 422


def test_logs_export_and_clear(client):
    client.post("/parking/initial", json={"lat": PARKED.latitude, "lon": PARKED.longitude})
    text = client.get("/logs").text
    assert "[INFO] Parked at" in text
    assert client.delete("/logs").status_code == 204
    assert client.get("/logs").text == ""


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_log_buffer_records_decisions_made_before_first_export(rt):
    app.dependency_overrides[get_runtime] = lambda: rt
    try:
        c = TestClient(app)
        c.post("/parking/initial", json={"lat": 37.7777, "lon": -122.4321})
        text = c.get("/logs").text
    finally:
        app.dependency_overrides.clear()
    assert "[INFO] Parked at (37.777700, -122.432100)" in text
