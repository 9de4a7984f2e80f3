from __future__ import annotations

import math
from collections import Counter
from typing import Any, Iterable, Iterator, Sequence

from features.store import FeatureStore
from features.types import MapFeature
from geo.bbox import BBox
from geo.coords import Coord, haversine
from geo.polygon import selection_area_sqkm
from workspace.types import WorkspaceData


def _unique(features: Iterable[MapFeature]) -> Iterator[MapFeature]:
    seen: set[str] = set()
    for f in features:
        if f.id in seen:
            continue
        seen.add(f.id)
        yield f


def all_features(stores: Sequence[FeatureStore]) -> list[MapFeature]:
    """Features across stores; the first store holding an id wins."""
    return list(_unique(f for s in stores for f in s))


def count_features(stores: Sequence[FeatureStore]) -> int:
    return len(all_features(stores))


def get_info(ws: WorkspaceData, stores: Sequence[FeatureStore]) -> dict[str, Any]:
    env = ws.envelope()
    return {
        "workspace_id": ws.id,
        "name": ws.name,
        "selection_type": ws.selection.selection_type,
        "feature_count": count_features(stores),
        "request_count": len(ws.requests),
        "area_sqkm": selection_area_sqkm(ws.selection),
        "envelope": env.as_tuple() if env is not None else None,
    }


def get_feature_by_id(stores: Sequence[FeatureStore], fid: str) -> MapFeature | None:
    for s in stores:
        f = s.get(fid)
        if f is not None:
            return f
    return None


def get_feature_tags(stores: Sequence[FeatureStore], fid: str) -> dict[str, Any] | None:
    f = get_feature_by_id(stores, fid)
    return dict(f.properties) if f is not None else None


def nearby_point(
    stores: Sequence[FeatureStore], center: Coord, radius_m: float
) -> list[MapFeature]:
    """Features whose centroid lies within `radius_m` of `center` (haversine)."""
    if radius_m < 0:
        return []
    return [f for f in all_features(stores) if haversine(center, f.centroid) <= radius_m]


def features_in_bbox(
    stores: Sequence[FeatureStore],
    min_lat: float,
    min_lon: float,
    max_lat: float,
    max_lon: float,
) -> list[MapFeature]:
    box = BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)
    return list(_unique(f for s in stores for f in s.intersecting(box)))


def features_in_polygon(stores: Sequence[FeatureStore], ring: Sequence[Coord]) -> list[MapFeature]:
    return list(_unique(f for s in stores for f in s.contained_in(ring)))


def nearest_feature(
    stores: Sequence[FeatureStore], c: Coord
) -> tuple[MapFeature, float] | None:
    """Linear scan by centroid distance; on ties the first feature seen wins."""
    best: MapFeature | None = None
    best_d = math.inf
    for f in all_features(stores):
        d = haversine(c, f.centroid)
        if d < best_d:
            best, best_d = f, d
    if best is None:
        return None
    return best, best_d


def summarize_features(
    stores: Sequence[FeatureStore], center: Coord, radius_m: float
) -> tuple[int, dict[str, int]]:
    """
    Count of nearby features and how often each tag key occurs among them.
    """
    found = nearby_point(stores, center, radius_m)
    keys: Counter[str] = Counter()
    for f in found:
        keys.update(f.properties.keys())
    return len(found), dict(sorted(keys.items()))


def distance_between(a: Coord, b: Coord) -> float:
    return haversine(a, b)
