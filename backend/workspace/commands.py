from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger

from errors import NoActiveWorkspaceError
from geo.coords import Coord
from workspace.workspace import Workspace

COMMAND_PREFIX = "rq:"

_NUM = r"[-+]?\d+(?:\.\d+)?"
_COORD_RE = re.compile(rf"\{{\s*({_NUM})\s*,\s*({_NUM})\s*\}}")
_BBOX_RE = re.compile(rf"\{{\s*({_NUM})\s*,\s*({_NUM})\s*,\s*({_NUM})\s*,\s*({_NUM})\s*\}}")
_PAIR_RE = re.compile(rf"\[\s*({_NUM})\s*,\s*({_NUM})\s*\]")
_RADIUS_RE = re.compile(rf"^r({_NUM})$")

HELP = (
    "Available commands: i, cnt, nb {lat,lon} r<m>, sm {lat,lon} r<m>, gt <id>, t <id>, "
    "bb {min_lat,min_lon,max_lat,max_lon}, ply {[lat,lon],...}, d {lat,lon} {lat,lon}, n {lat,lon}"
)


@dataclass(frozen=True)
class CommandResponse:
    """
    Text answer to an `rq:` command.

    - feature_ids: features the answer refers to, for highlighting
    """

    message: str
    feature_ids: tuple[str, ...] = field(default_factory=tuple)


def is_command(text: str) -> bool:
    return (text or "").lstrip().startswith(COMMAND_PREFIX)


def parse_coord(s: str) -> Coord | None:
    """`{lat,lon}` -> Coord."""
    m = _COORD_RE.fullmatch((s or "").strip())
    if m is None:
        return None
    return Coord(lat=float(m.group(1)), lon=float(m.group(2)))


def parse_radius(s: str) -> float | None:
    """`r<meters>` -> meters."""
    m = _RADIUS_RE.match((s or "").strip())
    if m is None:
        return None
    r = float(m.group(1))
    return r if r >= 0 else None


def parse_ring(s: str) -> list[Coord]:
    """`{[lat,lon],[lat,lon],...}` -> ring."""
    return [Coord(lat=float(a), lon=float(b)) for a, b in _PAIR_RE.findall(s or "")]


def _ids(features) -> tuple[str, ...]:
    return tuple(f.id for f in features)


def run_command(text: str, ws: Workspace, *, record: bool = True) -> CommandResponse:
    """
    Answer one `rq: <cmd> ...` line against the active workspace.

    With `record`, the answer is appended to the workspace chat as a user turn.
    """
    body = (text or "").strip()
    if body.startswith(COMMAND_PREFIX):
        body = body[len(COMMAND_PREFIX):].strip()
    cmd, _, rest = body.partition(" ")
    args = rest.split()

    resp = _dispatch(cmd, args, rest.strip(), ws)
    logger.info(f"command {body!r} -> {resp.message[:120]!r}")
    if record and ws.active is not None:
        ws.add_message("user", resp.message)
    return resp


def _dispatch(cmd: str, args: list[str], rest: str, ws: Workspace) -> CommandResponse:
    if not cmd:
        return CommandResponse(f"Missing command. {HELP}")

    if cmd == "i":
        try:
            info = ws.get_info()
        except NoActiveWorkspaceError:
            return CommandResponse(f"Features: {ws.count_features()}")
        return CommandResponse(
            f"Features: {info['feature_count']}, Area: {info['area_sqkm']:.3f} km2, "
            f"Selection: {info['selection_type']}"
        )

    if cmd == "cnt":
        return CommandResponse(f"Feature count: {ws.count_features()}")

    if cmd in ("nb", "sm"):
        usage = f"Use: rq: {cmd} {{lat,lon}} r<meters>"
        if len(args) < 2:
            return CommandResponse(f"Missing parameters. {usage}")
        center, radius = parse_coord(args[0]), parse_radius(args[1])
        if center is None or radius is None:
            return CommandResponse(f"Invalid coordinate or radius format. {usage}")
        if cmd == "nb":
            found = ws.nearby_point(center, radius)
            return CommandResponse(
                f"Found {len(found)} nearby features: {list(_ids(found))}", _ids(found)
            )
        count, tags = ws.summarize_features(center, radius)
        return CommandResponse(f"Count: {count}, Tags Summary: {tags}")

    if cmd in ("gt", "t"):
        if not args:
            return CommandResponse(f"Missing feature ID. Use: rq: {cmd} <feature_id>")
        fid = args[0]
        if cmd == "gt":
            f = ws.get_feature_by_id(fid)
            if f is None:
                return CommandResponse(f"Feature {fid} not found")
            c = f.centroid
            return CommandResponse(
                f"Feature {fid}: centroid ({c.lat:.6f}, {c.lon:.6f}), "
                f"{len(f.ring)} vertices, tags {f.properties}",
                (fid,),
            )
        tags = ws.get_feature_tags(fid)
        if not tags:
            return CommandResponse(f"Feature {fid} not found or has no tags")
        return CommandResponse(f"Tags for feature {fid}: {tags}", (fid,))

    if cmd == "bb":
        usage = "Use: rq: bb {min_lat,min_lon,max_lat,max_lon}"
        if not rest:
            return CommandResponse(f"Missing bbox. {usage}")
        m = _BBOX_RE.fullmatch(rest)
        if m is None:
            return CommandResponse(f"Invalid bbox format. {usage}")
        min_lat, min_lon, max_lat, max_lon = (float(g) for g in m.groups())
        found = ws.features_in_bbox(min_lat, min_lon, max_lat, max_lon)
        return CommandResponse(f"Found {len(found)} features in bbox: {list(_ids(found))}", _ids(found))

    if cmd == "ply":
        ring = parse_ring(rest)
        if len(ring) < 3:
            return CommandResponse("Polygon needs at least 3 points. Use: rq: ply {[lat,lon],[lat,lon],[lat,lon]}")
        found = ws.features_in_polygon(ring)
        return CommandResponse(f"Found {len(found)} features in polygon: {list(_ids(found))}", _ids(found))

    if cmd == "d":
        usage = "Use: rq: d {lat1,lon1} {lat2,lon2}"
        if len(args) < 2:
            return CommandResponse(f"Missing coordinates. {usage}")
        a, b = parse_coord(args[0]), parse_coord(args[1])
        if a is None or b is None:
            return CommandResponse(f"Invalid coordinate format. {usage}")
        return CommandResponse(f"Distance: {ws.distance_between(a, b):.2f} meters")

    if cmd == "n":
        usage = "Use: rq: n {lat,lon}"
        if not args:
            return CommandResponse(f"Missing coordinate. {usage}")
        c = parse_coord(args[0])
        if c is None:
            return CommandResponse(f"Invalid coordinate format. {usage}")
        hit = ws.nearest_feature(c)
        if hit is None:
            return CommandResponse("No features loaded")
        f, d = hit
        return CommandResponse(f"Nearest feature: {f.id} at {d:.2f} meters", (f.id,))

    return CommandResponse(f"Unknown command: {cmd}. {HELP}")
