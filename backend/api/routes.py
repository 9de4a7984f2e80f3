from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from errors import (
    NoActiveWorkspaceError,
    QueryValidationError,
    QueueFullError,
    UnknownWorkspaceError,
)
from features.types import MapFeature
from geo.coords import Coord
from geo.selection import Circle, NoSelection, Polygon, Rectangle, Selection
from telemetry.singleton import get_store
from workspace.commands import run_command
from workspace.persistence import selection_to_model
from workspace.types import WorkspaceData, WorkspaceRequest
from workspace.workspace import Workspace

router = APIRouter()


class ApiCoord(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float

    def to_coord(self) -> Coord:
        return Coord(lat=self.lat, lon=self.lon)


class ApiSelection(BaseModel):
    type: Literal["none", "rectangle", "circle", "polygon"]
    start: ApiCoord | None = None
    end: ApiCoord | None = None
    points: list[ApiCoord] = Field(default_factory=list)

    def to_selection(self) -> Selection:
        if self.type in ("rectangle", "circle"):
            if self.start is None or self.end is None:
                raise HTTPException(status_code=422, detail=f"{self.type} needs start and end")
            a, b = self.start.to_coord(), self.end.to_coord()
            return Rectangle(start=a, end=b) if self.type == "rectangle" else Circle(center=a, edge=b)
        if self.type == "polygon":
            return Polygon(points=tuple(p.to_coord() for p in self.points))
        return NoSelection()


class CreateWorkspaceBody(BaseModel):
    name: str
    selection: ApiSelection


class MessageBody(BaseModel):
    role: str
    content: str
    refusal: str | None = None
    reasoning: str | None = None


class ColorBody(BaseModel):
    key: str
    value: str
    color: tuple[int, int, int, int] | None = None


class CategoryBody(BaseModel):
    disabled: bool | None = None
    mode: Literal["all", "none"] | None = None
    items: dict[str, bool] = Field(default_factory=dict)


class OverpassBody(BaseModel):
    layer: int = Field(default=0, ge=0)


class GeocodeBody(BaseModel):
    name: str
    count: int = Field(default=1, ge=1, le=100)
    language: str | None = None


class ForecastBody(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    hourly: list[str] = Field(default_factory=list)
    daily: list[str] = Field(default_factory=list)


class PolygonBody(BaseModel):
    ring: list[ApiCoord]


class CommandBody(BaseModel):
    text: str


def _ws(request: Request) -> Workspace:
    return request.app.state.workspace


def _workspace_json(ws: WorkspaceData, active_id: str | None) -> dict[str, Any]:
    return {
        "id": ws.id,
        "name": ws.name,
        "active": ws.id == active_id,
        "selection": selection_to_model(ws.selection).model_dump(mode="json"),
        "creation_date": ws.creation_date,
        "last_modified": ws.last_modified,
        "requests": sorted(ws.requests),
        "missing_requests": sorted(ws.missing_requests),
        "messages": len(ws.messages),
    }


def _request_json(req: WorkspaceRequest) -> dict[str, Any]:
    return {
        "id": req.id,
        "kind": req.kind,
        "layer": req.layer,
        "visible": req.visible,
        "status": req.status.value,
        "bytes": len(req.raw_data),
        "features": len(req.processed_data),
        "last_query_date": req.last_query_date,
        "error": req.error,
    }


def _feature_json(f: MapFeature) -> dict[str, Any]:
    c = f.centroid
    return {
        "id": f.id,
        "centroid": {"lat": c.lat, "lon": c.lon},
        "closed": f.closed,
        "properties": f.properties,
    }


def _no_active() -> HTTPException:
    return HTTPException(status_code=409, detail="no workspace is selected")


@router.get("/workspaces")
def list_workspaces(request: Request):
    ws = _ws(request)
    return [_workspace_json(w, ws.active_id) for w in ws.workspaces.values()]


@router.post("/workspaces")
def create_workspace(body: CreateWorkspaceBody, request: Request):
    ws = _ws(request)
    created = ws.create_workspace(body.name, body.selection.to_selection())
    return _workspace_json(created, ws.active_id)


@router.post("/workspaces/{workspace_id}/select")
def select_workspace(workspace_id: str, request: Request):
    ws = _ws(request)
    try:
        selected = ws.select_workspace(workspace_id)
    except UnknownWorkspaceError:
        raise HTTPException(status_code=404, detail=f"unknown workspace {workspace_id}")
    return _workspace_json(selected, ws.active_id)


@router.delete("/workspaces/{workspace_id}")
def delete_workspace(workspace_id: str, request: Request):
    if not _ws(request).delete_workspace(workspace_id):
        raise HTTPException(status_code=404, detail=f"unknown workspace {workspace_id}")
    return {"deleted": workspace_id}


@router.post("/workspaces/active/messages")
def add_message(body: MessageBody, request: Request):
    try:
        msg = _ws(request).add_message(
            body.role, body.content, refusal=body.refusal, reasoning=body.reasoning
        )
    except NoActiveWorkspaceError:
        raise _no_active()
    return {"role": msg.role, "content": msg.content}


@router.put("/workspaces/active/colors")
def set_color(body: ColorBody, request: Request):
    ws = _ws(request)
    try:
        if body.color is None:
            ws.remove_property_color(body.key, body.value)
        else:
            ws.set_property_color(body.key, body.value, body.color)
    except NoActiveWorkspaceError:
        raise _no_active()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    active = ws.active
    return {f"{k}={v}": list(c) for (k, v), c in sorted(active.properties.items())} if active else {}


@router.get("/settings")
def get_settings(request: Request):
    settings = _ws(request).overpass.settings
    return {
        name: {
            "key": cat.key,
            "disabled": cat.disabled,
            "all": cat.all,
            "none": cat.none,
            "enabled": cat.enabled_items(),
        }
        for name, cat in sorted(settings.categories.items())
    }


@router.put("/settings/{category}")
def update_category(category: str, body: CategoryBody, request: Request):
    settings = _ws(request).overpass.settings
    try:
        cat = settings.category(category)
        if body.disabled is not None:
            cat.disabled = body.disabled
        if body.mode == "all":
            cat.set_all()
        elif body.mode == "none":
            cat.set_none()
        for sub, on in body.items.items():
            cat.toggle(sub, on)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"unknown category or item {e}")
    return {"category": category, "enabled": cat.enabled_items(), "all": cat.all, "none": cat.none}


@router.post("/requests/overpass")
def request_overpass(body: OverpassBody, request: Request):
    try:
        req = _ws(request).request_overpass(layer=body.layer)
    except NoActiveWorkspaceError:
        raise _no_active()
    except QueryValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except QueueFullError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return _request_json(req)


@router.post("/requests/geocode")
def request_geocode(body: GeocodeBody, request: Request):
    try:
        req = _ws(request).request_geocode(body.name, body.count, body.language)
    except NoActiveWorkspaceError:
        raise _no_active()
    except QueueFullError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return _request_json(req)


@router.post("/requests/forecast")
def request_forecast(body: ForecastBody, request: Request):
    try:
        req = _ws(request).request_forecast(
            body.latitude, body.longitude, hourly=body.hourly, daily=body.daily
        )
    except NoActiveWorkspaceError:
        raise _no_active()
    except QueueFullError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return _request_json(req)


@router.get("/requests")
def list_requests(request: Request):
    return [_request_json(r) for r in _ws(request).get_requests()]


@router.get("/requests/{request_id}/status")
def request_status(request_id: str, request: Request):
    status = _ws(request).request_status(request_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"unknown request {request_id}")
    return {"id": request_id, "status": status.value}


@router.get("/query/info")
def query_info(request: Request):
    try:
        return _ws(request).get_info()
    except NoActiveWorkspaceError:
        raise _no_active()


@router.get("/query/nearby")
def query_nearby(lat: float, lon: float, radius: float, request: Request):
    found = _ws(request).nearby_point(Coord(lat=lat, lon=lon), radius)
    return [_feature_json(f) for f in found]


@router.get("/query/bbox")
def query_bbox(min_lat: float, min_lon: float, max_lat: float, max_lon: float, request: Request):
    found = _ws(request).features_in_bbox(min_lat, min_lon, max_lat, max_lon)
    return [_feature_json(f) for f in found]


@router.post("/query/polygon")
def query_polygon(body: PolygonBody, request: Request):
    found = _ws(request).features_in_polygon([p.to_coord() for p in body.ring])
    return [_feature_json(f) for f in found]


@router.get("/query/nearest")
def query_nearest(lat: float, lon: float, request: Request):
    hit = _ws(request).nearest_feature(Coord(lat=lat, lon=lon))
    if hit is None:
        raise HTTPException(status_code=404, detail="no features loaded")
    f, d = hit
    return {"feature": _feature_json(f), "distance_m": d}


@router.get("/query/summary")
def query_summary(lat: float, lon: float, radius: float, request: Request):
    count, tags = _ws(request).summarize_features(Coord(lat=lat, lon=lon), radius)
    return {"count": count, "tags": tags}


@router.get("/query/distance")
def query_distance(lat1: float, lon1: float, lat2: float, lon2: float, request: Request):
    d = _ws(request).distance_between(Coord(lat=lat1, lon=lon1), Coord(lat=lat2, lon=lon2))
    return {"meters": d}


@router.get("/features/{feature_id}/tags")
def feature_tags(feature_id: str, request: Request):
    tags = _ws(request).get_feature_tags(feature_id)
    if tags is None:
        raise HTTPException(status_code=404, detail=f"unknown feature {feature_id}")
    return tags


@router.post("/command")
def command(body: CommandBody, request: Request):
    resp = run_command(body.text, _ws(request))
    return {"message": resp.message, "feature_ids": list(resp.feature_ids)}


@router.get("/telemetry/summary")
def telemetry_summary(kind: str | None = None):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.summary(kind=kind)}
