from __future__ import annotations

import math

from geo.bbox import BBox
from geo.coords import Coord, clamp_latitude, meters_per_tile  # noqa: F401


def coord_to_tile(c: Coord, zoom: int) -> tuple[int, int]:
    """
    Convert a coord to slippy tile (x, y) at zoom.

    Latitude is clamped to the WebMercator range and indices to the valid tile range.
    """
    z = int(zoom)
    n = 2**z

    lat = clamp_latitude(c.lat)
    lat_rad = math.radians(lat)

    x = int(math.floor((c.lon + 180.0) / 360.0 * n))
    y = int(
        math.floor(
            (1.0 - math.log(math.tan(lat_rad) + (1.0 / math.cos(lat_rad))) / math.pi)
            / 2.0
            * n
        )
    )
    x = max(0, min(n - 1, x))
    y = max(0, min(n - 1, y))
    return x, y


def _lat_from_tile_y(tile_y: int, n: int) -> float:
    # https://wiki.openstreetmap.org/wiki/Slippy_map_tilenames
    t = math.pi * (1.0 - 2.0 * tile_y / n)
    return math.degrees(math.atan(math.sinh(t)))


def tile_to_coord(x: int, y: int, zoom: int) -> Coord:
    """NW corner of tile (x, y) at zoom."""
    n = 2 ** int(zoom)
    lon = int(x) / n * 360.0 - 180.0
    return Coord(lat=_lat_from_tile_y(int(y), n), lon=lon)


def tile_width_degrees(zoom: int) -> float:
    return 360.0 / float(2 ** int(zoom))


def tile_bbox(zoom: int, x: int, y: int) -> BBox:
    """
    Slippy tile (z/x/y) bounds as a WGS84 lon/lat bbox.
    """
    n = 2 ** int(zoom)
    x = int(x)
    y = int(y)

    lon_left = x / n * 360.0 - 180.0
    lon_right = (x + 1) / n * 360.0 - 180.0
    lat_top = _lat_from_tile_y(y, n)
    lat_bottom = _lat_from_tile_y(y + 1, n)

    return BBox(
        min_lon=lon_left, min_lat=lat_bottom, max_lon=lon_right, max_lat=lat_top
    ).normalized()


def tiles_for_bbox(zoom: int, bbox: BBox) -> list[tuple[int, int, int]]:
    """
    List of slippy tiles (z, x, y) covering the bbox.
    """
    z = int(zoom)
    b = bbox.normalized()

    x0, y0 = coord_to_tile(Coord(lat=b.max_lat, lon=b.min_lon), z)  # top-left
    x1, y1 = coord_to_tile(Coord(lat=b.min_lat, lon=b.max_lon), z)  # bottom-right

    out: list[tuple[int, int, int]] = []
    for x in range(min(x0, x1), max(x0, x1) + 1):
        for y in range(min(y0, y1), max(y0, y1) + 1):
            out.append((z, x, y))
    return out
