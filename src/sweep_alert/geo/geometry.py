"""Point-to-centerline matching helpers.

Projection is planar (lat/lon treated as Cartesian); reported distances are
great-circle metres.  At city-block scale the projection error is negligible,
but the metre values feed fixed thresholds and must be real.
"""
from __future__ import annotations

from math import atan2, cos, radians, sin, sqrt
from typing import Any, List, Optional, Sequence, Tuple

from shapely.geometry import shape

from sweep_alert.core.models import Coordinate


EARTH_RADIUS_M = 6_371_000.0


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in metres between two WGS-84 points."""
    lat1r, lon1r, lat2r, lon2r = map(radians, [a.latitude, a.longitude, b.latitude, b.longitude])
    dlat = lat2r - lat1r
    dlon = lon2r - lon1r
    h = sin(dlat / 2) ** 2 + cos(lat1r) * cos(lat2r) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(h), sqrt(1 - h))


def closest_point_on_segment(
    point: Coordinate, a: Coordinate, b: Coordinate
) -> Tuple[float, Coordinate]:
    """Project *point* onto segment a-b.

    Returns ``(distance_m, closest_point)``.  A degenerate segment (a == b)
    yields the distance to ``a``.
    """
    dx = b.longitude - a.longitude
    dy = b.latitude - a.latitude
    len_sq = dx * dx + dy * dy
    if len_sq == 0:
        return haversine_m(point, a), a

    dot = (point.longitude - a.longitude) * dx + (point.latitude - a.latitude) * dy
    t = max(0.0, min(1.0, dot / len_sq))
    closest = Coordinate(latitude=a.latitude + t * dy, longitude=a.longitude + t * dx)
    return haversine_m(point, closest), closest


def closest_point_on_polyline(
    point: Coordinate, lines: Sequence[Sequence[Coordinate]]
) -> Optional[Tuple[float, Coordinate]]:
    """Nearest point over every consecutive pair of every line.

    ``lines`` holds one or more disjoint lines (a MultiLineString).  Single
    vertex lines are measured as points.  Returns ``None`` when there is no
    vertex at all.
    """
    best: Optional[Tuple[float, Coordinate]] = None
    for line in lines:
        if len(line) == 1:
            candidates = [(haversine_m(point, line[0]), line[0])]
        else:
            candidates = [
                closest_point_on_segment(point, line[i], line[i + 1])
                for i in range(len(line) - 1)
            ]
        for cand in candidates:
            if best is None or cand[0] < best[0]:
                best = cand
    return best


def lines_from_geojson(geom: Any) -> List[List[Coordinate]]:
    """Convert a GeoJSON LineString / MultiLineString into coordinate lists.

    GeoJSON stores ``[lon, lat]``; the result is in Coordinate order.  Other
    geometry types yield an empty list.
    """
    g = shape(geom)
    if g.is_empty:
        return []
    if g.geom_type == "LineString":
        parts = [g]
    elif g.geom_type == "MultiLineString":
        parts = list(g.geoms)
    else:
        return []
    return [
        [Coordinate(latitude=float(y), longitude=float(x)) for x, y, *_ in part.coords]
        for part in parts
    ]
