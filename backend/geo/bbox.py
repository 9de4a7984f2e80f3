from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from geo.coords import Coord


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - min_lon, min_lat, max_lon, max_lat (shapely x/y order)
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def from_points(cls, points: Iterable[Coord]) -> "BBox":
        pts = list(points)
        if not pts:
            raise ValueError("cannot build a bbox from zero points")
        return cls(
            min_lon=min(p.lon for p in pts),
            min_lat=min(p.lat for p in pts),
            max_lon=max(p.lon for p in pts),
            max_lat=max(p.lat for p in pts),
        )

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def center(self) -> Coord:
        return Coord(
            lat=(self.min_lat + self.max_lat) / 2.0,
            lon=(self.min_lon + self.max_lon) / 2.0,
        )

    def contains(self, c: Coord) -> bool:
        return self.min_lon <= c.lon <= self.max_lon and self.min_lat <= c.lat <= self.max_lat

    def intersects(self, other: "BBox") -> bool:
        return not (
            other.min_lon > self.max_lon
            or other.max_lon < self.min_lon
            or other.min_lat > self.max_lat
            or other.max_lat < self.min_lat
        )

    def covers(self, other: "BBox") -> bool:
        return (
            self.min_lon <= other.min_lon
            and self.min_lat <= other.min_lat
            and self.max_lon >= other.max_lon
            and self.max_lat >= other.max_lat
        )
