"""San Francisco street-sweeping schedule (DataSF Socrata dataset)."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from sweep_alert.cache import keys
from sweep_alert.cache.redis_client import cache_get_json, cache_set_json
from sweep_alert.core.models import Coordinate, ScheduleRecord
from sweep_alert.geo.geometry import lines_from_geojson
from sweep_alert.providers.base import ScheduleSource, ScheduleSourceError
from sweep_alert.providers.http import HTTPClient

log = logging.getLogger(__name__)


def record_from_row(row: Dict[str, Any]) -> Optional[ScheduleRecord]:
    """Decode one dataset row; None when the row is unusable."""
    data = {k: v for k, v in row.items() if k not in ("line", "geometry")}
    line = row.get("line")
    geometry: List[list] = []
    if isinstance(line, dict):
        try:
            geometry = lines_from_geojson(line)
        except Exception as exc:
            log.debug("Bad geometry on %s: %s", data.get("corridor"), exc)
    try:
        return ScheduleRecord(**data, geometry=geometry)
    except ValidationError as exc:
        log.debug("Skipping malformed schedule row %s: %s", data.get("cnn"), exc)
        return None


class SFGovScheduleSource(ScheduleSource):
    """
    Queries the dataset for rows whose ``line`` lies within a circle:

      $where=within_circle(line, <lat>, <lon>, <radius_m>)

    Raw rows are cached in Redis (when configured) keyed by rounded center and
    radius.  The radius is floored at ``min_radius_m``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[HTTPClient] = None,
        min_radius_m: Optional[float] = None,
        cache_ttl_s: Optional[int] = None,
    ):
        from sweep_alert.config import settings

        self.url = url or settings.schedule_source_url
        self.client = client or HTTPClient(
            user_agent=settings.user_agent,
            timeout_s=settings.http_timeout_s,
            tries=settings.http_tries,
            backoff_s=settings.http_backoff_s,
        )
        self.min_radius_m = settings.schedule_min_radius_m if min_radius_m is None else min_radius_m
        self.cache_ttl_s = settings.ttl_schedules if cache_ttl_s is None else cache_ttl_s

    def _fetch_rows(self, center: Coordinate, radius_m: float) -> List[Dict[str, Any]]:
        key = keys.schedules(center.latitude, center.longitude, radius_m)
        cached = cache_get_json(key)
        if isinstance(cached, list):
            return cached

        where = f"within_circle(line,{center.latitude},{center.longitude},{radius_m:.0f})"
        try:
            rows = self.client.get_json(self.url, params={"$where": where})
        except (requests.RequestException, ValueError) as exc:
            raise ScheduleSourceError(f"schedule fetch failed: {exc}") from exc

        if not isinstance(rows, list):
            raise ScheduleSourceError(f"unexpected schedule payload: {type(rows).__name__}")
        cache_set_json(key, rows, self.cache_ttl_s)
        return rows

    def get_schedules(self, center: Coordinate, radius_m: float) -> list[ScheduleRecord]:
        radius = max(float(radius_m), self.min_radius_m)
        rows = self._fetch_rows(center, radius)
        out = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            rec = record_from_row(row)
            if rec is not None:
                out.append(rec)
        log.info("Fetched %d schedule(s) (%d rows) within %.0fm of (%.6f, %.6f)",
                 len(out), len(rows), radius, center.latitude, center.longitude)
        return out
