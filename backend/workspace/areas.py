from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from geo.bbox import BBox
from geo.coords import Coord
from workspace.types import WorkspaceData


@dataclass
class SelectionAreas:
    """
    Spatial index over workspace envelopes.

    Workspaces without a selection are not indexed. Envelopes may overlap.
    """

    _ids: list[str] = field(default_factory=list, repr=False)
    _tree: STRtree | None = field(default=None, repr=False)

    def rebuild(self, workspaces: Iterable[WorkspaceData]) -> None:
        ids: list[str] = []
        geoms = []
        for ws in workspaces:
            env = ws.envelope()
            if env is None:
                continue
            ids.append(ws.id)
            geoms.append(shapely_box(*env.as_tuple()))
        self._ids = ids
        self._tree = STRtree(geoms) if geoms else None

    def at(self, c: Coord) -> list[str]:
        if self._tree is None:
            return []
        return [self._ids[int(i)] for i in sorted(self._tree.query(Point(c.lon, c.lat)))]

    def intersecting(self, bbox: BBox) -> list[str]:
        if self._tree is None:
            return []
        idxs = self._tree.query(shapely_box(*bbox.normalized().as_tuple()))
        return [self._ids[int(i)] for i in sorted(idxs)]
