from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

from loguru import logger

from config import cache_dir, vector_tile_url
from errors import TransportError
from net.http import RateLimitedSession


def raster_tile_url(origin: str, z: int, x: int, y: int) -> str:
    """
    `<origin>/{z}/{x}/{y}.png`, or the `&x=&y=&z=` query form for Google-style origins.
    """
    if "google" in origin:
        return f"{origin}&x={x}&y={y}&z={z}"
    return f"{origin.rstrip('/')}/{z}/{x}/{y}.png"


def vector_tile_url_for(origin: str, z: int, x: int, y: int) -> str:
    return f"{origin.rstrip('/')}/{z}/{x}/{y}.pbf"


@dataclass
class TileCache:
    """
    On-disk tile cache.

    Layout (relative to `root`):
    - raster: `<quoted origin>/<z>_<x>_<y>.png`
    - vector: `<z>_<x>_<y>.pbf`

    Hits are returned byte-for-byte. Misses are fetched, written, then returned.
    A failed fetch returns empty bytes and writes nothing.
    """

    root: Path = field(default_factory=cache_dir)
    http: RateLimitedSession = field(default_factory=RateLimitedSession)
    vector_origin: str = field(default_factory=vector_tile_url)

    def raster_path(self, origin: str, z: int, x: int, y: int) -> Path:
        return Path(self.root) / quote(origin, safe="") / f"{int(z)}_{int(x)}_{int(y)}.png"

    def vector_path(self, z: int, x: int, y: int) -> Path:
        return Path(self.root) / f"{int(z)}_{int(x)}_{int(y)}.pbf"

    def get_raster(self, origin: str, z: int, x: int, y: int) -> bytes:
        return self._get_or_fetch(
            self.raster_path(origin, z, x, y), raster_tile_url(origin, z, x, y)
        )

    def get_vector(self, z: int, x: int, y: int) -> bytes:
        return self._get_or_fetch(
            self.vector_path(z, x, y), vector_tile_url_for(self.vector_origin, z, x, y)
        )

    def _get_or_fetch(self, path: Path, url: str) -> bytes:
        if path.exists():
            try:
                return path.read_bytes()
            except OSError as e:
                logger.warning(f"unreadable cached tile {path}: {e}; refetching")

        try:
            data = self.http.get(url)
        except TransportError as e:
            logger.warning(f"tile fetch failed {url}: {e}")
            return b""
        if not data:
            return b""

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            logger.warning(f"could not cache tile {path}: {e}")
        return data
