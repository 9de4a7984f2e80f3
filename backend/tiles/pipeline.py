from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from config import tile_max_concurrent, tile_size
from errors import ParseError
from geo.bbox import BBox
from geo.tiles import tiles_for_bbox
from tasks.worker import BoundedWorker
from tiles.cache import TileCache
from tiles.render import decode_png, render_vector_tile

TileKind = Literal["raster", "vector"]


@dataclass(frozen=True)
class RenderedTile:
    z: int
    x: int
    y: int
    size: int
    # Raw RGBA8, `size * size * 4` bytes; empty when the fetch or decode failed.
    rgba: bytes

    @property
    def ok(self) -> bool:
        return bool(self.rgba)


class TilePipeline:
    """
    Background fetch + decode of map tiles on a bounded worker.

    Requests for a tile already in flight are ignored. Finished tiles are
    collected by `poll()` from the host loop.
    """

    def __init__(
        self,
        cache: TileCache | None = None,
        *,
        kind: TileKind = "raster",
        origin: str = "https://tile.openstreetmap.org",
        size: int | None = None,
        max_concurrent: int | None = None,
    ):
        self.cache = cache or TileCache()
        self.kind = kind
        self.origin = origin
        self.size = size or tile_size()
        self.worker = BoundedWorker(max_concurrent or tile_max_concurrent(), name="tiles")
        self._lock = threading.Lock()
        self._in_flight: set[tuple[int, int, int]] = set()
        self._done: list[RenderedTile] = []

    def request(self, z: int, x: int, y: int) -> bool:
        key = (int(z), int(x), int(y))
        with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
        self.worker.submit(lambda: self._load(*key), key=f"{key[0]}/{key[1]}/{key[2]}")
        return True

    def request_bbox(self, bbox: BBox, zoom: int) -> int:
        return sum(1 for z, x, y in tiles_for_bbox(zoom, bbox) if self.request(z, x, y))

    def _load(self, z: int, x: int, y: int) -> RenderedTile:
        rgba = b""
        try:
            if self.kind == "vector":
                data = self.cache.get_vector(z, x, y)
                rgba = render_vector_tile(data, self.size) if data else b""
            else:
                data = self.cache.get_raster(self.origin, z, x, y)
                rgba = decode_png(data, self.size) if data else b""
        except ParseError as e:
            logger.warning(f"tile {z}/{x}/{y}: {e}")
        finally:
            with self._lock:
                self._in_flight.discard((z, x, y))
        tile = RenderedTile(z=z, x=x, y=y, size=self.size, rgba=rgba)
        with self._lock:
            self._done.append(tile)
        return tile

    def tick(self) -> None:
        self.worker.tick()
        self.worker.cleanup()

    def poll(self) -> list[RenderedTile]:
        with self._lock:
            out, self._done = self._done, []
        return out

    def shutdown(self) -> None:
        self.worker.shutdown()
