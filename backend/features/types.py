from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from shapely.geometry import LineString, Point, Polygon
from shapely.geometry.base import BaseGeometry

from geo.bbox import BBox
from geo.coords import Coord


@dataclass(frozen=True, eq=False)
class MapFeature:
    """
    A single map feature parsed from Overpass or GeoJSON.

    Notes:
    - `ring` is an open ring of (lon, lat) vertices; the closing edge is implicit.
    - `closed` records whether the source geometry repeated its first vertex.
    - Identity is the id: two features with the same id compare equal.
    """

    id: str
    properties: dict[str, Any]
    ring: tuple[tuple[float, float], ...]
    closed: bool = False
    source: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "ring", tuple((float(x), float(y)) for x, y in self.ring))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MapFeature):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @cached_property
    def geometry(self) -> BaseGeometry:
        n = len(self.ring)
        if n >= 3:
            return Polygon(self.ring)
        if n == 2:
            return LineString(self.ring)
        return Point(self.ring[0])

    def envelope(self) -> BBox:
        min_lon, min_lat, max_lon, max_lat = self.geometry.bounds
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    @cached_property
    def centroid(self) -> Coord:
        """
        Geometry centroid.

        Zero-area rings (open ways folded into a polygon) fall back to the
        centroid of the vertex path.
        """
        c = self.geometry.centroid
        if c.is_empty and len(self.ring) >= 2:
            c = LineString(self.ring).centroid
        if c.is_empty:
            env = self.envelope()
            return env.center()
        return Coord(lat=c.y, lon=c.x)
