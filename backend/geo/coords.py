from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


# Half of the equatorial circumference in EPSG:3857 meters.
MERCATOR_HALF_EXTENT = 20037508.34
EARTH_RADIUS_M = 6_371_000.0
MAX_MERCATOR_LAT = 85.05112878


def normalize_longitude(lon: float) -> float:
    """
    Fold any finite longitude into (-180, 180].
    """
    lon = float(lon)
    if not math.isfinite(lon):
        raise ValueError(f"longitude must be finite, got {lon!r}")
    lon = math.fmod(lon, 360.0)
    if lon <= -180.0:
        lon += 360.0
    elif lon > 180.0:
        lon -= 360.0
    return lon


def clamp_latitude(lat: float) -> float:
    return max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, float(lat)))


@dataclass(frozen=True)
class Coord:
    """
    WGS84 coordinate in degrees.

    Longitude is normalized on construction; latitude is kept as given and
    clamped only where Mercator math needs it.
    """

    lat: float
    lon: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "lat", float(self.lat))
        object.__setattr__(self, "lon", normalize_longitude(self.lon))

    def as_lonlat(self) -> tuple[float, float]:
        return (self.lon, self.lat)


def coord_to_mercator(c: Coord) -> tuple[float, float]:
    lat_rad = math.radians(clamp_latitude(c.lat))
    lon_rad = math.radians(c.lon)
    x = lon_rad * MERCATOR_HALF_EXTENT / math.pi
    y = math.asinh(math.tan(lat_rad)) * MERCATOR_HALF_EXTENT / math.pi
    return x, y


def mercator_to_coord(x: float, y: float) -> Coord:
    lon = math.degrees(x * math.pi / MERCATOR_HALF_EXTENT)
    lat = math.degrees(math.atan(math.sinh(y * math.pi / MERCATOR_HALF_EXTENT)))
    return Coord(lat=lat, lon=lon)


def meters_per_tile(zoom: int) -> float:
    """Width of one slippy tile in Mercator meters."""
    return 2.0 * MERCATOR_HALF_EXTENT / float(2 ** int(zoom))


def coord_to_game(
    c: Coord, reference: Coord, zoom: int, tile_quality: float
) -> tuple[float, float]:
    """
    Planar frame relative to `reference`, in tile-quality units.

    One tile at `zoom` spans `tile_quality` game units.
    """
    unit = meters_per_tile(zoom) / float(tile_quality)
    x, y = coord_to_mercator(c)
    rx, ry = coord_to_mercator(reference)
    return (x - rx) / unit, (y - ry) / unit


def game_to_coord(
    gx: float, gy: float, reference: Coord, zoom: int, tile_quality: float
) -> Coord:
    unit = meters_per_tile(zoom) / float(tile_quality)
    rx, ry = coord_to_mercator(reference)
    return mercator_to_coord(rx + gx * unit, ry + gy * unit)


def haversine(a: Coord, b: Coord) -> float:
    """Great-circle distance in meters."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = math.sin(dlat / 2.0) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


class DistanceUnit(str, Enum):
    CENTIMETERS = "cm"
    METERS = "m"
    KILOMETERS = "km"


def distance(a: Coord, b: Coord) -> tuple[float, DistanceUnit]:
    """
    Haversine distance, auto-ranged for display.
    """
    meters = haversine(a, b)
    if meters > 999.0:
        return meters / 1000.0, DistanceUnit.KILOMETERS
    if meters < 1.0:
        return meters * 100.0, DistanceUnit.CENTIMETERS
    return meters, DistanceUnit.METERS


def to_meters(value: float, unit: DistanceUnit) -> float:
    if unit == DistanceUnit.KILOMETERS:
        return value * 1000.0
    if unit == DistanceUnit.CENTIMETERS:
        return value / 100.0
    return value
