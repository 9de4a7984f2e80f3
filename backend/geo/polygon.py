from __future__ import annotations

import math
from typing import Sequence

from pyproj import Geod
from shapely.geometry import Polygon as ShapelyPolygon

from geo.selection import Circle, NoSelection, Polygon, Rectangle, Selection

GEOD = Geod(ellps="WGS84")

# Tolerance (degrees) for treating a point as lying on a ring edge.
_EDGE_EPS = 1e-12


def _on_segment(px: float, py: float, ax: float, ay: float, bx: float, by: float) -> bool:
    cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
    if abs(cross) > _EDGE_EPS:
        return False
    return (
        min(ax, bx) - _EDGE_EPS <= px <= max(ax, bx) + _EDGE_EPS
        and min(ay, by) - _EDGE_EPS <= py <= max(ay, by) + _EDGE_EPS
    )


def point_in_ring(point: tuple[float, float], ring: Sequence[tuple[float, float]]) -> bool:
    """
    Even-odd ray casting.

    `ring` is an open ring (the closing edge is implicit). Points lying exactly
    on an edge count as inside. Rings with fewer than 3 vertices contain nothing.
    """
    n = len(ring)
    if n < 3:
        return False

    px, py = float(point[0]), float(point[1])
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if _on_segment(px, py, xj, yj, xi, yi):
            return True
        if (yi > py) != (yj > py):
            x_cross = (xj - xi) * (py - yi) / (yj - yi) + xi
            if px < x_cross:
                inside = not inside
        j = i
    return inside


def selection_area_sqkm(selection: Selection) -> float:
    """Geodesic area of a selection in square kilometers."""
    if isinstance(selection, NoSelection):
        return 0.0
    if isinstance(selection, Circle):
        r = selection.radius_m()
        return math.pi * r * r / 1_000_000
    if isinstance(selection, Rectangle):
        env = selection.envelope()
        ring = [
            (env.min_lon, env.min_lat),
            (env.max_lon, env.min_lat),
            (env.max_lon, env.max_lat),
            (env.min_lon, env.max_lat),
        ]
    elif isinstance(selection, Polygon):
        ring = [p.as_lonlat() for p in selection.points]
    else:
        raise TypeError(f"unsupported selection: {selection!r}")

    if len(ring) < 3:
        return 0.0
    area, _ = GEOD.geometry_area_perimeter(ShapelyPolygon(ring))
    return abs(area) / 1_000_000
