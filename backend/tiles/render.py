from __future__ import annotations

import io
from typing import Any, Iterable

import mapbox_vector_tile
from PIL import Image, ImageDraw, UnidentifiedImageError

from errors import ParseError

RGBA = tuple[int, int, int, int]

BACKGROUND: RGBA = (242, 239, 233, 255)

# layer name -> (fill, stroke, stroke width)
LAYER_STYLES: dict[str, tuple[RGBA | None, RGBA | None, int]] = {
    "water": ((110, 160, 220, 255), None, 1),
    "waterway": (None, (110, 160, 220, 255), 2),
    "park": ((150, 200, 140, 255), None, 1),
    "building": ((211, 211, 211, 255), (190, 190, 190, 255), 1),
    "transportation": (None, (255, 255, 255, 255), 3),
}

# Paint order: areas first, then lines on top.
LAYER_ORDER = ("water", "park", "waterway", "building", "transportation")


def decode_png(data: bytes, size: int) -> bytes:
    """
    Decode PNG (or any Pillow-readable image) bytes into raw RGBA8 of `size` x `size`.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            rgba = img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise ParseError(f"cannot decode tile image: {e}") from e
    if rgba.size != (size, size):
        rgba = rgba.resize((size, size), Image.Resampling.BILINEAR)
    return rgba.tobytes()


def _scale(points: Iterable[Any], factor: float) -> list[tuple[float, float]]:
    return [(float(p[0]) * factor, float(p[1]) * factor) for p in points]


def _draw_geometry(
    draw: ImageDraw.ImageDraw,
    geom: dict[str, Any],
    factor: float,
    fill: RGBA | None,
    stroke: RGBA | None,
    width: int,
) -> None:
    gtype = geom.get("type")
    coords = geom.get("coordinates") or []

    if gtype == "Polygon":
        polys = [coords]
    elif gtype == "MultiPolygon":
        polys = coords
    else:
        polys = []

    for poly in polys:
        if not poly:
            continue
        outer = _scale(poly[0], factor)
        if len(outer) >= 3:
            draw.polygon(outer, fill=fill, outline=stroke)
        # Holes are painted back with the background.
        for hole in poly[1:]:
            pts = _scale(hole, factor)
            if len(pts) >= 3 and fill is not None:
                draw.polygon(pts, fill=BACKGROUND)

    if gtype in ("LineString", "MultiLineString"):
        lines = [coords] if gtype == "LineString" else coords
        color = stroke or fill
        if color is None:
            return
        for line in lines:
            pts = _scale(line, factor)
            if len(pts) >= 2:
                draw.line(pts, fill=color, width=width)


def render_vector_tile(data: bytes, size: int) -> bytes:
    """
    Rasterize a Mapbox Vector Tile to RGBA8 of `size` x `size`.

    Only the styled layers are painted; everything else is ignored.
    """
    try:
        tile = mapbox_vector_tile.decode(data, default_options={"y_coord_down": True})
    except Exception as e:
        raise ParseError(f"cannot decode vector tile: {e}") from e

    img = Image.new("RGBA", (size, size), BACKGROUND)
    draw = ImageDraw.Draw(img)
    for name in LAYER_ORDER:
        layer = tile.get(name)
        if not layer:
            continue
        fill, stroke, width = LAYER_STYLES[name]
        factor = size / float(layer.get("extent") or 4096)
        for feature in layer.get("features", []):
            _draw_geometry(draw, feature.get("geometry") or {}, factor, fill, stroke, width)
    return img.tobytes()
