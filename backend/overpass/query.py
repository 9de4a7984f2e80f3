from __future__ import annotations

from errors import QueryValidationError
from geo.selection import Circle, NoSelection, Polygon, Rectangle, Selection
from overpass.settings import OverpassSettings

QUERY_PREFIX = "[out:json];"
QUERY_SUFFIX = "out body geom;"


def format_number(v: float, *, min_decimals: int = 3, max_decimals: int = 6) -> str:
    """
    Fixed-point with trailing zeros trimmed, keeping at least `min_decimals`.

    0.12 -> "0.120", 52.19512345678 -> "52.195123".
    """
    s = f"{float(v):.{max_decimals}f}"
    whole, _, frac = s.partition(".")
    frac = frac.rstrip("0")
    if len(frac) < min_decimals:
        frac = frac.ljust(min_decimals, "0")
    if whole == "-0" and not frac.strip("0"):
        whole = "0"
    return f"{whole}.{frac}" if frac else whole


def _latlon(lat: float, lon: float) -> str:
    return f"{format_number(lat)} {format_number(lon)}"


def format_bounds(selection: Selection) -> str:
    """Overpass QL spatial filter for a selection (without parentheses)."""
    if isinstance(selection, Rectangle):
        lat1, lon1 = selection.start.lat, selection.start.lon
        lat2, lon2 = selection.end.lat, selection.end.lon
        corners = [(lat1, lon1), (lat1, lon2), (lat2, lon2), (lat2, lon1)]
        return 'poly:"' + " ".join(_latlon(a, b) for a, b in corners) + '"'
    if isinstance(selection, Circle):
        radius = format_number(selection.radius_m(), min_decimals=0, max_decimals=2)
        c = selection.center
        return f"around:{radius}, {format_number(c.lat)}, {format_number(c.lon)}"
    if isinstance(selection, Polygon):
        if len(selection.points) < 3:
            raise QueryValidationError("Polygon selection needs at least 3 points")
        return 'poly:"' + " ".join(_latlon(p.lat, p.lon) for p in selection.points) + '"'
    if isinstance(selection, NoSelection):
        raise QueryValidationError("No selection to query")
    raise QueryValidationError(f"Unsupported selection: {selection!r}")


def _union(key: str, subkey: str, bounds: str) -> str:
    flt = f'["{key}"]' if subkey == "*" else f'["{key}"="{subkey}"]'
    return f"(way{flt}({bounds}); node{flt}({bounds}); relation{flt}({bounds}););"


def build_query(selection: Selection, settings: OverpassSettings) -> str:
    """
    Overpass QL for every enabled (category, subkey) pair inside the selection.

    Raises `QueryValidationError` when nothing is enabled.
    """
    bounds = format_bounds(selection)
    body: list[str] = []
    for key, subkey in settings.enabled_pairs():
        key = key.lower()
        subkey = subkey.lower()
        if subkey == "n/a":
            continue
        body.append(_union(key, subkey, bounds))

    if not body:
        raise QueryValidationError("No valid settings provided")

    return QUERY_PREFIX + "\n" + "\n".join(body) + "\n" + QUERY_SUFFIX
