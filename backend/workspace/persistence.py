from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from apis.openmeteo import OpenMeteoParams
from config import workspace_dir
from errors import PersistenceError
from geo.coords import Coord
from geo.selection import Circle, NoSelection, Polygon, Rectangle, Selection
from workspace.types import (
    ChatMessage,
    OpenMeteo,
    OpenRouter,
    OverpassTurbo,
    RequestKind,
    WorkspaceData,
    WorkspaceRequest,
)

WORKSPACE_PREFIX = "WS_"
REQUEST_PREFIX = "RQ_"


class CoordModel(BaseModel):
    lat: float
    lon: float


class SelectionModel(BaseModel):
    selection_type: Literal["NONE", "RECTANGLE", "CIRCLE", "POLYGON"]
    start: CoordModel | None = None
    end: CoordModel | None = None
    points: list[CoordModel] | None = None


class PropertyEntry(BaseModel):
    key: tuple[str, str]
    value: tuple[int, int, int, int]


class MessageModel(BaseModel):
    role: str
    content: str
    refusal: str | None = None
    reasoning: str | None = None


class WorkspaceFile(BaseModel):
    id: str
    name: str
    selection: SelectionModel
    creation_date: int
    last_modified: int
    requests: list[str] = Field(default_factory=list)
    properties: list[PropertyEntry] = Field(default_factory=list)
    messages: list[MessageModel] = Field(default_factory=list)


class RequestFile(BaseModel):
    id: str
    layer: int = Field(ge=0)
    visible: bool = True
    request: dict[str, Any]
    raw_data: list[int] = Field(default_factory=list)
    last_query_date: int = 0


def _coord_model(c: Coord) -> CoordModel:
    return CoordModel(lat=c.lat, lon=c.lon)


def _coord(m: CoordModel) -> Coord:
    return Coord(lat=m.lat, lon=m.lon)


def selection_to_model(selection: Selection) -> SelectionModel:
    if isinstance(selection, Rectangle):
        return SelectionModel(
            selection_type="RECTANGLE", start=_coord_model(selection.start), end=_coord_model(selection.end)
        )
    if isinstance(selection, Circle):
        return SelectionModel(
            selection_type="CIRCLE", start=_coord_model(selection.center), end=_coord_model(selection.edge)
        )
    if isinstance(selection, Polygon):
        return SelectionModel(
            selection_type="POLYGON", points=[_coord_model(p) for p in selection.points]
        )
    return SelectionModel(selection_type="NONE")


def selection_from_model(m: SelectionModel) -> Selection:
    if m.selection_type == "RECTANGLE" and m.start and m.end:
        return Rectangle(start=_coord(m.start), end=_coord(m.end))
    if m.selection_type == "CIRCLE" and m.start and m.end:
        return Circle(center=_coord(m.start), edge=_coord(m.end))
    if m.selection_type == "POLYGON" and m.points is not None:
        return Polygon(points=tuple(_coord(p) for p in m.points))
    return NoSelection()


def request_kind_to_json(kind: RequestKind) -> dict[str, Any]:
    if isinstance(kind, OverpassTurbo):
        return {"OverpassTurboRequest": kind.query}
    if isinstance(kind, OpenMeteo):
        return {"OpenMeteoRequest": kind.params.model_dump(mode="json")}
    return {"OpenRouterRequest": None}


def request_kind_from_json(data: dict[str, Any]) -> RequestKind:
    if len(data) != 1:
        raise PersistenceError(f"request must carry exactly one tag, got {sorted(data)}")
    tag, value = next(iter(data.items()))
    if tag == "OverpassTurboRequest":
        if not isinstance(value, str):
            raise PersistenceError("OverpassTurboRequest must hold a query string")
        return OverpassTurbo(query=value)
    if tag == "OpenMeteoRequest":
        try:
            return OpenMeteo(params=OpenMeteoParams.model_validate(value))
        except ValidationError as e:
            raise PersistenceError(f"invalid OpenMeteoRequest: {e}") from e
    if tag == "OpenRouterRequest":
        return OpenRouter()
    raise PersistenceError(f"unknown request tag {tag!r}")


def workspace_to_file(ws: WorkspaceData) -> WorkspaceFile:
    return WorkspaceFile(
        id=ws.id,
        name=ws.name,
        selection=selection_to_model(ws.selection),
        creation_date=ws.creation_date,
        last_modified=ws.last_modified,
        requests=sorted(ws.requests),
        properties=[PropertyEntry(key=k, value=v) for k, v in sorted(ws.properties.items())],
        messages=[
            MessageModel(role=m.role, content=m.content, refusal=m.refusal, reasoning=m.reasoning)
            for m in ws.messages
        ],
    )


def workspace_from_file(f: WorkspaceFile) -> WorkspaceData:
    return WorkspaceData(
        id=f.id,
        name=f.name,
        selection=selection_from_model(f.selection),
        creation_date=f.creation_date,
        last_modified=f.last_modified,
        requests=set(f.requests),
        properties={tuple(p.key): tuple(p.value) for p in f.properties},  # type: ignore[misc]
        messages=[
            ChatMessage(role=m.role, content=m.content, refusal=m.refusal, reasoning=m.reasoning)
            for m in f.messages
        ],
    )


def request_to_file(req: WorkspaceRequest) -> RequestFile:
    return RequestFile(
        id=req.id,
        layer=req.layer,
        visible=req.visible,
        request=request_kind_to_json(req.request),
        raw_data=list(req.raw_data),
        last_query_date=req.last_query_date,
    )


def request_from_file(f: RequestFile) -> WorkspaceRequest:
    return WorkspaceRequest(
        id=f.id,
        layer=f.layer,
        visible=f.visible,
        request=request_kind_from_json(f.request),
        raw_data=bytes(f.raw_data),
        last_query_date=f.last_query_date,
    )


def _dumps(model: BaseModel) -> str:
    return json.dumps(model.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"


@dataclass
class WorkspaceStore:
    """
    `WS_<id>.json` / `RQ_<id>.json` files in one directory.

    Writes go through a temp file and `os.replace`, serialized by a process-wide
    lock, so a reader never sees a half-written file.
    """

    root: Path = field(default_factory=workspace_dir)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def workspace_path(self, workspace_id: str) -> Path:
        return Path(self.root) / f"{WORKSPACE_PREFIX}{workspace_id}.json"

    def request_path(self, request_id: str) -> Path:
        return Path(self.root) / f"{REQUEST_PREFIX}{request_id}.json"

    def _write(self, path: Path, text: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_text(text, encoding="utf-8")
                os.replace(tmp, path)
            except OSError as e:
                raise PersistenceError(f"cannot write {path}: {e}") from e

    def save_workspace(self, ws: WorkspaceData) -> Path:
        path = self.workspace_path(ws.id)
        self._write(path, _dumps(workspace_to_file(ws)))
        return path

    def save_request(self, req: WorkspaceRequest, *, overwrite: bool = False) -> bool:
        """Write `RQ_<id>.json`. Returns False when it exists and `overwrite` is off."""
        path = self.request_path(req.id)
        if path.exists() and not overwrite:
            return False
        self._write(path, _dumps(request_to_file(req)))
        return True

    def load_workspace(self, path: Path) -> WorkspaceData:
        try:
            return workspace_from_file(WorkspaceFile.model_validate_json(path.read_bytes()))
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"cannot load {path}: {e}") from e

    def load_request(self, path: Path) -> WorkspaceRequest:
        try:
            return request_from_file(RequestFile.model_validate_json(path.read_bytes()))
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"cannot load {path}: {e}") from e

    def scan(self) -> tuple[list[WorkspaceData], dict[str, WorkspaceRequest]]:
        """
        Load every workspace and request file under `root`.

        Unreadable files are skipped with a warning.
        """
        root = Path(self.root)
        if not root.exists():
            return [], {}

        workspaces: list[WorkspaceData] = []
        for p in sorted(root.glob(f"{WORKSPACE_PREFIX}*.json")):
            try:
                workspaces.append(self.load_workspace(p))
            except PersistenceError as e:
                logger.warning(f"skipping workspace file: {e}")

        requests: dict[str, WorkspaceRequest] = {}
        for p in sorted(root.glob(f"{REQUEST_PREFIX}*.json")):
            try:
                req = self.load_request(p)
            except PersistenceError as e:
                logger.warning(f"skipping request file: {e}")
                continue
            requests[req.id] = req

        return workspaces, requests

    def delete_workspace(self, workspace_id: str) -> bool:
        path = self.workspace_path(workspace_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise PersistenceError(f"cannot delete {path}: {e}") from e
        return True

    def delete_request(self, request_id: str) -> bool:
        path = self.request_path(request_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise PersistenceError(f"cannot delete {path}: {e}") from e
        return True
