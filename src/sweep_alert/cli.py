from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from sweep_alert.contracts.events import LocationUpdate, RegionEntered, RegionExited, VisitEvent
from sweep_alert.core.clock import ManualClock, SystemClock
from sweep_alert.core.models import GEOFENCE_IDENTIFIER, Coordinate, LocationSample, ScheduleRecord
from sweep_alert.core.schedule import resolve_candidates, soonest
from sweep_alert.core.service import build_runtime
from sweep_alert.notify.reminders import InMemoryReminderScheduler
from sweep_alert.providers.base import ScheduleSourceError
from sweep_alert.providers.mock import InMemoryScheduleSource
from sweep_alert.providers.sfgov import SFGovScheduleSource, record_from_row
from sweep_alert.storage.store import MemoryParkingStore


def _fmt(dt: Optional[datetime]) -> str:
    return dt.strftime("%a %Y-%m-%d %H:%M") if dt is not None else "-"


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _load_records(path: Path) -> List[ScheduleRecord]:
    rows = _read_json(path)
    return [r for r in (record_from_row(row) for row in rows) if r is not None]


def cmd_next_cleaning(args: argparse.Namespace, console: Console) -> int:
    point = Coordinate(latitude=args.lat, longitude=args.lon)
    clock = SystemClock()
    at = datetime.fromisoformat(args.at) if args.at else clock.now()
    if at.tzinfo is None:
        at = at.replace(tzinfo=clock.tz)

    if args.schedules:
        source = InMemoryScheduleSource(_load_records(Path(args.schedules)))
    else:
        source = SFGovScheduleSource()

    try:
        schedules = source.get_schedules(point, args.radius)
    except ScheduleSourceError as e:
        console.print(f"[red]Schedule lookup failed:[/red] {e}")
        return 1

    candidates = resolve_candidates(schedules, point, at)

    table = Table(title=f"Street cleaning near {args.lat:.6f}, {args.lon:.6f}")
    table.add_column("Corridor")
    table.add_column("Limits")
    table.add_column("Side")
    table.add_column("Day")
    table.add_column("Hours")
    table.add_column("Dist m")
    table.add_column("Next")
    for c in sorted(candidates, key=lambda c: (c.distance_m is None, c.distance_m or 0.0)):
        r = c.record
        table.add_row(
            r.corridor,
            r.limits,
            r.blockside,
            r.weekday,
            f"{r.fromhour}-{r.tohour}",
            f"{c.distance_m:.1f}" if c.distance_m is not None else "",
            _fmt(c.next_cleaning),
        )
    console.print(table)
    console.print(f"{len(schedules)} fetched, {len(candidates)} matched. Next cleaning: {_fmt(soonest(candidates))}")
    return 0


def _event_from_trace(item: Dict[str, Any], when: datetime):
    kind = item.get("type")
    if kind == "location":
        return LocationUpdate(
            LocationSample(
                coordinate=Coordinate(latitude=float(item["lat"]), longitude=float(item["lon"])),
                horizontal_accuracy_m=float(item.get("accuracy", 10.0)),
                speed_mps=float(item.get("speed", -1.0)),
                timestamp=when,
            )
        )
    if kind == "exit":
        return RegionExited(identifier=item.get("identifier", GEOFENCE_IDENTIFIER), timestamp=when)
    if kind == "enter":
        return RegionEntered(identifier=item.get("identifier", GEOFENCE_IDENTIFIER), timestamp=when)
    if kind == "visit":
        departure = item.get("departure_t")
        return VisitEvent(
            coordinate=Coordinate(latitude=float(item["lat"]), longitude=float(item["lon"])),
            accuracy_m=float(item.get("accuracy", 50.0)),
            arrival=when,
            departure=None if departure is None else when + timedelta(seconds=float(departure) - float(item["t"])),
        )
    return None


def cmd_replay(args: argparse.Namespace, console: Console) -> int:
    """
    Trace file::

      {"start": "2026-03-02T09:00:00-08:00",
       "parked": {"lat": 37.76, "lon": -122.42, "accuracy": 10},
       "events": [{"t": 0, "type": "exit"},
                  {"t": 20, "type": "location", "lat": ..., "lon": ..., "speed": 8.0}, ...]}

    ``t`` is seconds from ``start``.  Other event types: ``visit``, ``enter``,
    ``moved``, ``initial``.
    """
    trace = _read_json(Path(args.trace))
    start = datetime.fromisoformat(trace["start"])
    clock = ManualClock(start)
    records = _load_records(Path(args.schedules)) if args.schedules else []
    reminders = InMemoryReminderScheduler()

    rt = build_runtime(
        store=MemoryParkingStore(),
        reminders=reminders,
        source=InMemoryScheduleSource(records),
        clock=clock,
    )
    if trace.get("parked"):
        p = trace["parked"]
        rt.tracker.user_set_initial_parking(
            Coordinate(latitude=float(p["lat"]), longitude=float(p["lon"])), float(p.get("accuracy", 10.0))
        )

    table = Table(title=f"Replay {Path(args.trace).name}")
    table.add_column("t s", justify="right")
    table.add_column("Event")
    table.add_column("Speed")
    table.add_column("State")
    table.add_column("Decision")

    for item in sorted(trace.get("events", []), key=lambda e: float(e["t"])):
        when = start + timedelta(seconds=float(item["t"]))
        clock.set(when)
        before_gen = rt.service.generation
        kind = item.get("type")

        if kind == "moved":
            rt.tracker.user_moved_car()
        elif kind == "initial":
            rt.tracker.user_set_initial_parking(
                Coordinate(latitude=float(item["lat"]), longitude=float(item["lon"])),
                float(item.get("accuracy", 10.0)),
            )
        else:
            ev = _event_from_trace(item, when)
            if ev is None:
                console.print(f"[yellow]Skipping unknown event type {kind!r}[/yellow]")
                continue
            rt.tracker.handle(ev)

        decision = ""
        if rt.service.generation != before_gen:
            belief = rt.tracker.belief
            decision = (
                f"parked {belief.coordinate.latitude:.6f},{belief.coordinate.longitude:.6f}"
                if belief is not None
                else "departed"
            )
        speed = item.get("speed")
        table.add_row(
            f"{float(item['t']):.0f}",
            str(kind),
            f"{float(speed):.1f}" if speed is not None else "",
            rt.tracker.state.value,
            decision,
        )

    # Let in-flight schedule lookups land before reporting
    rt.close()
    console.print(table)
    console.print(f"Next cleaning: {_fmt(rt.service.next_cleaning)}")
    for rem in reminders.pending:
        console.print(f"Reminder: {rem.title} at {_fmt(rem.fire_at)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="sweep-alert")
    ap.add_argument("--debug", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    nc = sub.add_parser("next-cleaning", help="Resolve the next cleaning for a parked point")
    nc.add_argument("--lat", type=float, required=True)
    nc.add_argument("--lon", type=float, required=True)
    nc.add_argument("--radius", type=float, default=100.0, help="Search radius in metres (floored at 100)")
    nc.add_argument("--at", default=None, help="Reference time, ISO 8601 (default: now)")
    nc.add_argument("--schedules", default=None, help="Local JSON rows instead of the live dataset")

    rp = sub.add_parser("replay", help="Drive the parking tracker from a JSON event trace")
    rp.add_argument("--trace", required=True)
    rp.add_argument("--schedules", default=None, help="JSON schedule rows for reminder lookup")

    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )

    console = Console()
    if args.command == "next-cleaning":
        return cmd_next_cleaning(args, console)
    return cmd_replay(args, console)


if __name__ == "__main__":
    raise SystemExit(main())
