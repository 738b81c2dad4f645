from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from sweep_alert.contracts.events import RegionExited
from sweep_alert.core.models import GEOFENCE_IDENTIFIER, Coordinate, ParkingEvent
from sweep_alert.core.service import ParkingService, build_runtime
from sweep_alert.core.tracker import TrackerState
from sweep_alert.notify.reminders import InMemoryReminderScheduler
from sweep_alert.providers.mock import InMemoryScheduleSource
from sweep_alert.storage.store import MemoryParkingStore
from tests.conftest import EW_STREET, PARKED, SF, T0, InlineExecutor, feed, make_record, north_of


class _DeferredExecutor:
    """Holds submitted calls until ``run_all`` so tests can reorder completions."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args):
        self.jobs.append((fn, args))

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        return [fn(*args) for fn, args in jobs]


class _FailingStore(MemoryParkingStore):
    def save(self, coordinate, accuracy_m, parked_at=None):
        return False

    def clear(self):
        return False


@pytest.fixture
def source():
    return InMemoryScheduleSource(
        [
            make_record(weekday="Tues", fromhour="8", blockside="North", geometry=EW_STREET),
            make_record(weekday="Thu", fromhour="8", blockside="South", geometry=EW_STREET),
        ]
    )


def _service(clock, source, store=None, executor=None):
    return ParkingService(
        store=store or MemoryParkingStore(),
        reminders=InMemoryReminderScheduler(),
        source=source,
        clock=clock,
        executor=executor,
    )


def _event(coord=None, accuracy=12.0):
    return ParkingEvent(coordinate=coord or north_of(PARKED, 10), accuracy_m=accuracy, timestamp=T0)


def test_parked_persists_and_schedules_reminder_an_hour_early(clock, source):
    svc = _service(clock, source)
    svc.on_parked(_event())

    saved = svc.store.load()
    assert saved == (north_of(PARKED, 10), 12.0, T0)
    assert svc.next_cleaning == datetime(2026, 3, 3, 8, 0, tzinfo=SF)
    [rem] = svc.reminders.pending
    assert rem.fire_at == datetime(2026, 3, 3, 7, 0, tzinfo=SF)
    assert rem.title == "Move your car!"
    assert [r.title for r in svc.reminders.sent] == ["Parked"]


def test_fetch_radius_is_floored_at_100m(clock, source):
    svc = _service(clock, source)
    svc.on_parked(_event(accuracy=12.0))
    svc.on_parked(_event(accuracy=250.0))
    assert [r for _, r in source.calls] == [100.0, 250.0]


def test_new_parking_replaces_pending_reminders(clock, source):
    svc = _service(clock, source)
    svc.on_parked(_event())
    svc.on_parked(_event(coord=north_of(PARKED, -10)))
    [rem] = svc.reminders.pending
    assert rem.fire_at == datetime(2026, 3, 5, 7, 0, tzinfo=SF)


def test_departed_clears_reminders_and_store(clock, source):
    svc = _service(clock, source)
    svc.on_parked(_event())
    svc.on_departed()
    assert svc.reminders.pending == []
    assert svc.store.load() is None
    assert svc.next_cleaning is None


def test_fetch_failure_leaves_no_reminder(clock, source):
    source.fail = ConnectionError("offline")
    svc = _service(clock, source)
    svc.on_parked(_event())
    assert svc.reminders.pending == []
    assert svc.store.load() is not None


def test_no_upcoming_cleaning_leaves_no_reminder(clock):
    svc = _service(clock, InMemoryScheduleSource([make_record(weeks=(0, 0, 0, 0, 0), geometry=EW_STREET)]))
    svc.on_parked(_event())
    assert svc.reminders.pending == []
    assert svc.next_cleaning is None


def test_reminder_already_due_fires_now(clock):
    clock.set(datetime(2026, 3, 3, 7, 30, tzinfo=SF))
    svc = _service(clock, InMemoryScheduleSource([make_record(weekday="Tues", geometry=EW_STREET)]))
    svc.on_parked(_event())
    [rem] = svc.reminders.pending
    assert rem.fire_at == clock.now()
    assert svc.reminders.due(clock.now()) == [rem]


def test_late_result_for_superseded_parking_is_discarded(clock, source):
    ex = _DeferredExecutor()
    svc = _service(clock, source, executor=ex)
    svc.on_parked(_event())
    svc.on_departed()
    assert ex.run_all() == [None]
    assert svc.reminders.pending == []
    assert svc.next_cleaning is None


def test_only_latest_of_two_pending_lookups_applies(clock, source):
    ex = _DeferredExecutor()
    svc = _service(clock, source, executor=ex)
    svc.on_parked(_event())
    svc.on_parked(_event(coord=north_of(PARKED, -10)))
    results = ex.run_all()
    assert results[0] is None
    assert results[1] == datetime(2026, 3, 5, 8, 0, tzinfo=SF)
    assert len(svc.reminders.pending) == 1


def test_store_failures_do_not_raise(clock, source):
    svc = _service(clock, source, store=_FailingStore())
    svc.on_parked(_event())
    svc.on_departed()
    assert svc.reminders.pending == []


# ---------------------------------------------------------------------------
# Full wiring
# ---------------------------------------------------------------------------

def test_runtime_restores_saved_parking(clock, source):
    store = MemoryParkingStore()
    store.save(PARKED, 7.0)
    rt = build_runtime(store=store, source=source, clock=clock)
    rt.close()
    assert rt.tracker.belief.coordinate == PARKED
    assert rt.geofence.active.center == PARKED
    # Restoring is not a new decision
    assert rt.reminders.pending == []


def test_runtime_drive_and_park_end_to_end(clock, source):
    store = MemoryParkingStore()
    store.save(Coordinate(37.78, -122.40), 7.0)
    rt = build_runtime(store=store, source=source, clock=clock)
    old = rt.tracker.belief.coordinate

    rt.tracker.handle(RegionExited(identifier=GEOFENCE_IDENTIFIER))
    feed(rt.tracker, clock, 5, Coordinate(old.latitude + 0.0005, old.longitude), speed=9.0)
    assert store.load() is None

    spot = north_of(PARKED, 10)
    for i in range(31):
        feed(rt.tracker, clock, 900 + i, spot, speed=0.3)

    rt.close()
    assert rt.tracker.state is TrackerState.IDLE
    assert store.load().coordinate == spot
    assert rt.service.next_cleaning == datetime(2026, 3, 3, 8, 0, tzinfo=SF)
    assert [r.fire_at for r in rt.reminders.pending] == [datetime(2026, 3, 3, 7, 0, tzinfo=SF)]


def test_runtime_restores_the_original_parking_time(clock, source):
    store = MemoryParkingStore()
    store.save(PARKED, 7.0, T0 - timedelta(hours=3))
    rt = build_runtime(store=store, source=source, clock=clock, executor=InlineExecutor())
    assert rt.tracker.belief.timestamp == T0 - timedelta(hours=3)


def test_runtime_without_saved_time_uses_restore_time(clock, source):
    store = MemoryParkingStore()
    store.save(PARKED, 7.0)
    rt = build_runtime(store=store, source=source, clock=clock, executor=InlineExecutor())
    assert rt.tracker.belief.timestamp == T0


def test_default_runtime_looks_up_schedules_off_the_tracker_lock(clock, source):
    release = threading.Event()
    seen = []

    class _SlowSource(InMemoryScheduleSource):
        def get_schedules(self, center, radius_m):
            # Only returns True when the parking call came back while this
            # lookup was still in flight
            seen.append(release.wait(5))
            return super().get_schedules(center, radius_m)

    rt = build_runtime(store=MemoryParkingStore(), source=_SlowSource(source.records), clock=clock)
    try:
        rt.tracker.user_set_initial_parking(north_of(PARKED, 10), 5.0)
        # Tracker stays usable while the lookup blocks
        rt.tracker.user_moved_car()
        assert rt.tracker.belief is None
        release.set()
    finally:
        release.set()
        rt.close()

    assert seen == [True]
    # The lookup finished after the car moved, so nothing is armed
    assert rt.service.next_cleaning is None
    assert rt.reminders.pending == []


def test_reminder_lead_is_real_time_across_dst_start(clock):
    # 2026-03-08 02:00 PST jumps to 03:00 PDT
    clock.set(datetime(2026, 3, 7, 12, 0, tzinfo=SF))
    svc = _service(clock, InMemoryScheduleSource([make_record(weekday="Sun", fromhour="3", geometry=EW_STREET)]))
    svc.on_parked(_event())

    cleaning = datetime(2026, 3, 8, 3, 0, tzinfo=SF)
    assert svc.next_cleaning == cleaning
    [rem] = svc.reminders.pending
    assert cleaning.timestamp() - rem.fire_at.timestamp() == 3600
    assert rem.fire_at == datetime(2026, 3, 8, 1, 0, tzinfo=SF)
