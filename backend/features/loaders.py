from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from errors import ParseError
from features.types import MapFeature


def _decode(data: bytes | str | dict) -> Any:
    if isinstance(data, dict):
        return data
    try:
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"invalid JSON: {e}") from e


def _open_ring(coords: list[tuple[float, float]]) -> tuple[list[tuple[float, float]], bool]:
    closed = len(coords) > 1 and coords[0] == coords[-1]
    if closed:
        coords = coords[:-1]
    return coords, closed


def parse_overpass(data: bytes | str | dict) -> list[MapFeature]:
    """
    Input: Overpass JSON produced by `[out:json]; ... out body geom;`.

    Every element with a non-empty `geometry: [{lat, lon}, ...]` becomes one feature
    whose ring is that vertex list. Tags are carried verbatim.
    """
    doc = _decode(data)
    if not isinstance(doc, dict):
        raise ParseError("Overpass response root must be an object")
    elements = doc.get("elements")
    if elements is None:
        raise ParseError("Overpass response is missing `elements`")
    if not isinstance(elements, list):
        raise ParseError("`elements` must be an array")

    out: list[MapFeature] = []
    for el in elements:
        if not isinstance(el, dict):
            continue
        eid = el.get("id")
        geom = el.get("geometry") or []
        coords: list[tuple[float, float]] = []
        for p in geom:
            if not isinstance(p, dict):
                continue
            lat = p.get("lat")
            lon = p.get("lon")
            if lat is None or lon is None:
                continue
            coords.append((float(lon), float(lat)))

        if not coords or eid is None:
            continue

        ring, closed = _open_ring(coords)
        tags = el.get("tags")
        out.append(
            MapFeature(
                id=str(eid),
                properties=dict(tags) if isinstance(tags, dict) else {},
                ring=tuple(ring),
                closed=closed,
                source="overpass",
            )
        )

    return out


def _to_ring(ring: Any) -> list[tuple[float, float]]:
    out: list[tuple[float, float]] = []
    for p in ring or []:
        if not p or len(p) < 2:
            continue
        lon, lat = float(p[0]), float(p[1])
        out.append((lon, lat))
    return out


def parse_geojson(data: bytes | str | dict, *, source: str = "geojson") -> list[MapFeature]:
    """
    Input: a GeoJSON FeatureCollection (a bare Feature is accepted too).

    Supported geometries: Point, LineString, Polygon (exterior ring only) and
    MultiPolygon, which yields one feature per member polygon with ids `<id>-<j>`.
    """
    doc = _decode(data)
    if not isinstance(doc, dict):
        raise ParseError("GeoJSON root must be an object")
    if doc.get("type") == "Feature":
        features = [doc]
    else:
        features = doc.get("features")
        if not isinstance(features, list):
            raise ParseError("GeoJSON FeatureCollection is missing `features`")

    out: list[MapFeature] = []
    for i, feature in enumerate(features):
        geom = (feature or {}).get("geometry") or {}
        props = (feature or {}).get("properties") or {}
        gtype = geom.get("type")
        coords = geom.get("coordinates")
        if not coords:
            continue

        fid = str((feature or {}).get("id") or props.get("id") or f"{source}-{i}")

        if gtype == "Point":
            pts = _to_ring([coords])
            if pts:
                out.append(MapFeature(id=fid, properties=props, ring=tuple(pts), source=source))
        elif gtype == "LineString":
            line = _to_ring(coords)
            if line:
                out.append(MapFeature(id=fid, properties=props, ring=tuple(line), source=source))
        elif gtype == "Polygon":
            ring, closed = _open_ring(_to_ring(coords[0]))
            if ring:
                out.append(
                    MapFeature(id=fid, properties=props, ring=tuple(ring), closed=closed, source=source)
                )
        elif gtype == "MultiPolygon":
            for j, poly in enumerate(coords):
                if not poly:
                    continue
                ring, closed = _open_ring(_to_ring(poly[0]))
                if ring:
                    out.append(
                        MapFeature(
                            id=f"{fid}-{j}",
                            properties=props,
                            ring=tuple(ring),
                            closed=closed,
                            source=source,
                        )
                    )
        else:
            logger.debug(f"skipping unsupported GeoJSON geometry type {gtype!r} (feature {fid})")

    return out


def load_geojson_file(path: Path) -> list[MapFeature]:
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise ParseError(f"cannot read {path}: {e}") from e
    return parse_geojson(raw, source=Path(path).stem)
