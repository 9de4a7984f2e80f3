from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from features.types import MapFeature
from geo.bbox import BBox
from geo.coords import Coord
from geo.polygon import point_in_ring


@dataclass
class FeatureStore:
    """
    Spatially indexed set of `MapFeature`s keyed by id.

    Notes:
    - The STRtree is immutable in shapely, so it is rebuilt lazily after mutation.
    - Features are indexed by their envelope; inserting an existing id replaces it.
    """

    _features: dict[str, MapFeature] = field(default_factory=dict, repr=False)
    _tree: STRtree | None = field(default=None, repr=False)
    _tree_items: list[MapFeature] = field(default_factory=list, repr=False)
    _dirty: bool = field(default=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def from_features(cls, features: Iterable[MapFeature]) -> "FeatureStore":
        store = cls()
        store.extend(features)
        return store

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self) -> Iterator[MapFeature]:
        with self._lock:
            return iter(list(self._features.values()))

    def __contains__(self, fid: object) -> bool:
        return fid in self._features

    def is_empty(self) -> bool:
        return not self._features

    def insert(self, feature: MapFeature) -> None:
        with self._lock:
            self._features[feature.id] = feature
            self._dirty = True

    def extend(self, features: Iterable[MapFeature]) -> None:
        with self._lock:
            for f in features:
                self._features[f.id] = f
            self._dirty = True

    def remove(self, fid: str) -> MapFeature | None:
        with self._lock:
            f = self._features.pop(str(fid), None)
            if f is not None:
                self._dirty = True
            return f

    def get(self, fid: str) -> MapFeature | None:
        return self._features.get(str(fid))

    def envelope_of(self, fid: str) -> BBox | None:
        f = self.get(fid)
        return f.envelope() if f is not None else None

    def _ensure_tree(self) -> tuple[STRtree | None, list[MapFeature]]:
        with self._lock:
            if self._dirty or (self._tree is None and self._features):
                items = list(self._features.values())
                self._tree_items = items
                self._tree = (
                    STRtree([shapely_box(*f.envelope().as_tuple()) for f in items])
                    if items
                    else None
                )
                self._dirty = False
            return self._tree, self._tree_items

    def intersecting(self, bbox: BBox) -> list[MapFeature]:
        """Features whose envelope intersects `bbox`."""
        tree, items = self._ensure_tree()
        if tree is None:
            return []
        idxs = tree.query(shapely_box(*bbox.normalized().as_tuple()))
        return [items[int(i)] for i in sorted(idxs)]

    def locate_at(self, c: Coord) -> list[MapFeature]:
        """Features whose envelope contains the point."""
        tree, items = self._ensure_tree()
        if tree is None:
            return []
        idxs = tree.query(Point(c.lon, c.lat))
        return [items[int(i)] for i in sorted(idxs) if items[int(i)].envelope().contains(c)]

    def contained_in(self, ring: Sequence[Coord]) -> list[MapFeature]:
        """
        Features whose centroid falls inside `ring` (even-odd, edges inclusive).
        """
        if len(ring) < 3:
            return []
        candidates = self.intersecting(BBox.from_points(ring))
        lonlat = [c.as_lonlat() for c in ring]
        return [f for f in candidates if point_in_ring(f.centroid.as_lonlat(), lonlat)]
