from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

from geo.bbox import BBox
from geo.coords import EARTH_RADIUS_M, Coord, haversine


@dataclass(frozen=True)
class NoSelection:
    selection_type = "NONE"

    def envelope(self) -> BBox | None:
        return None


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned selection spanned by two opposite corners."""

    start: Coord
    end: Coord

    selection_type = "RECTANGLE"

    def envelope(self) -> BBox:
        return BBox.from_points([self.start, self.end])


@dataclass(frozen=True)
class Circle:
    """
    Circle around `center` passing through `edge`.

    The radius is the haversine distance between the two, in meters.
    """

    center: Coord
    edge: Coord

    selection_type = "CIRCLE"

    def radius_m(self) -> float:
        return haversine(self.center, self.edge)

    def envelope(self) -> BBox:
        ang = self.radius_m() / EARTH_RADIUS_M
        dlat = math.degrees(ang)
        min_lat = max(-90.0, self.center.lat - dlat)
        max_lat = min(90.0, self.center.lat + dlat)
        # A circle reaching a pole, or crossing +-180, spans every longitude.
        if max_lat >= 90.0 or min_lat <= -90.0:
            return BBox(min_lon=-180.0, min_lat=min_lat, max_lon=180.0, max_lat=max_lat)
        # Widest longitude offset of a small circle, reached at its tangent meridians.
        dlon = math.degrees(math.asin(math.sin(ang) / math.cos(math.radians(self.center.lat))))
        min_lon, max_lon = self.center.lon - dlon, self.center.lon + dlon
        if min_lon < -180.0 or max_lon > 180.0:
            min_lon, max_lon = -180.0, 180.0
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)


@dataclass(frozen=True)
class Polygon:
    """Ordered ring of coords; the closing edge is implicit."""

    points: tuple[Coord, ...]

    selection_type = "POLYGON"

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", tuple(self.points))

    def envelope(self) -> BBox | None:
        if not self.points:
            return None
        return BBox.from_points(self.points)


Selection = Union[NoSelection, Rectangle, Circle, Polygon]
