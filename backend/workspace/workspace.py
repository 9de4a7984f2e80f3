from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Sequence

from loguru import logger

from apis.openmeteo import OpenMeteoClient, OpenMeteoParams, features_from_response
from config import autosave_enabled, max_pending, worker_max_concurrent
from errors import (
    NoActiveWorkspaceError,
    ParseError,
    PersistenceError,
    QueueFullError,
    UnknownWorkspaceError,
    WorkspaceCoreError,
)
from features.loaders import load_geojson_file, parse_overpass
from features.store import FeatureStore
from features.types import MapFeature
from geo.coords import Coord
from geo.selection import Selection
from overpass.client import OverpassClient
from tasks.worker import BoundedWorker
from telemetry.singleton import get_store
from telemetry.store import TelemetryStore
from workspace import queries
from workspace.areas import SelectionAreas
from workspace.events import EventBus, Event, FileDropped, SelectionFinished, ZoomChanged
from workspace.persistence import WorkspaceStore
from workspace.types import (
    RGBA,
    ChatMessage,
    OpenMeteo,
    OpenRouter,
    OverpassTurbo,
    RequestStatus,
    WorkspaceData,
    WorkspaceRequest,
    now_ts,
)


class Workspace:
    """
    Workspaces, their requests and the worker that executes them.

    The host calls `tick()` periodically. Each tick:
    1. dispatches at most one queued request,
    2. parses completed requests into their feature stores (emits `ZoomChanged`),
    3. autosaves completed requests and modified workspaces,
    4. forgets finished worker handles.

    Locks:
    - `_state_lock` guards workspace data (mutated by host and API threads).
    - `_loaded_lock` guards `loaded_requests` and in-flight requests (written by worker threads).
    """

    def __init__(
        self,
        *,
        store: WorkspaceStore | None = None,
        overpass: OverpassClient | None = None,
        openmeteo: OpenMeteoClient | None = None,
        worker: BoundedWorker | None = None,
        events: EventBus | None = None,
        telemetry: TelemetryStore | None = None,
        autosave: bool | None = None,
    ):
        self.store = store or WorkspaceStore()
        self.overpass = overpass or OverpassClient()
        self.openmeteo = openmeteo or OpenMeteoClient()
        self.worker = worker or BoundedWorker(
            worker_max_concurrent(), name="requests", max_pending=max_pending()
        )
        self.events = events or EventBus()
        self.autosave = autosave_enabled() if autosave is None else autosave
        self._telemetry = telemetry

        self.workspaces: dict[str, WorkspaceData] = {}
        self.areas = SelectionAreas()
        self.active_id: str | None = None
        # Features from dropped GeoJSON files; not tied to a request.
        self.imported = FeatureStore()

        self._state_lock = threading.RLock()
        self._dirty: set[str] = set()

        self._loaded_lock = threading.Lock()
        self.loaded_requests: dict[str, WorkspaceRequest] = {}
        self._in_flight: dict[str, WorkspaceRequest] = {}
        self._unsaved: set[str] = set()

        self.events.subscribe(self.handle_event)

    # -- workspaces ---------------------------------------------------------

    @property
    def active(self) -> WorkspaceData | None:
        with self._state_lock:
            return self.workspaces.get(self.active_id) if self.active_id else None

    def _require_active(self) -> WorkspaceData:
        ws = self.active
        if ws is None:
            raise NoActiveWorkspaceError("no workspace is selected")
        return ws

    def _mark_dirty(self, ws: WorkspaceData) -> None:
        self._dirty.add(ws.id)

    def create_workspace(self, name: str, selection: Selection, *, select: bool = True) -> WorkspaceData:
        ws = WorkspaceData(name=name, selection=selection)
        with self._state_lock:
            self.workspaces[ws.id] = ws
            self.areas.rebuild(self.workspaces.values())
            self._mark_dirty(ws)
            if select:
                self.active_id = ws.id
        logger.info(f"created workspace {ws.id} ({name!r}, {selection.selection_type})")
        return ws

    def select_workspace(self, workspace_id: str) -> WorkspaceData:
        with self._state_lock:
            ws = self.workspaces.get(workspace_id)
            if ws is None:
                raise UnknownWorkspaceError(workspace_id)
            self.active_id = ws.id
        self.events.emit(ZoomChanged())
        return ws

    def workspaces_at(self, c: Coord) -> list[WorkspaceData]:
        with self._state_lock:
            return [self.workspaces[i] for i in self.areas.at(c) if i in self.workspaces]

    def rename_workspace(self, name: str) -> None:
        with self._state_lock:
            ws = self._require_active()
            ws.set_name(name)
            self._mark_dirty(ws)

    def delete_workspace(self, workspace_id: str) -> bool:
        with self._state_lock:
            ws = self.workspaces.pop(workspace_id, None)
            if ws is None:
                return False
            self._dirty.discard(workspace_id)
            if self.active_id == workspace_id:
                self.active_id = None
            self.areas.rebuild(self.workspaces.values())
        self.store.delete_workspace(workspace_id)
        logger.info(f"deleted workspace {workspace_id}")
        return True

    def set_property_color(self, key: str, value: str, color: RGBA) -> None:
        with self._state_lock:
            ws = self._require_active()
            ws.set_property_color(key, value, color)
            self._mark_dirty(ws)
        self.events.emit(ZoomChanged())

    def remove_property_color(self, key: str, value: str) -> None:
        with self._state_lock:
            ws = self._require_active()
            ws.remove_property_color(key, value)
            self._mark_dirty(ws)
        self.events.emit(ZoomChanged())

    def color_for(self, feature: MapFeature) -> RGBA | None:
        """First matching (tag, value) color of the active workspace, in key order."""
        ws = self.active
        if ws is None:
            return None
        for (key, value), color in sorted(ws.properties.items()):
            if str(feature.properties.get(key)) == value:
                return color
        return None

    def add_message(
        self, role: str, content: str, *, refusal: str | None = None, reasoning: str | None = None
    ) -> ChatMessage:
        msg = ChatMessage(role=role, content=content, refusal=refusal, reasoning=reasoning)
        with self._state_lock:
            ws = self._require_active()
            ws.add_message(msg)
            self._mark_dirty(ws)
        return msg

    # -- requests -----------------------------------------------------------

    def process_request(self, request: WorkspaceRequest) -> WorkspaceRequest:
        """
        Queue a run of `request` and attach its id to the active workspace.

        The queued run is a fresh copy; reusing an id replaces the loaded entry once
        the new run completes.
        """
        run = request.copy_for_run()
        with self._state_lock:
            ws = self._require_active()
            with self._loaded_lock:
                self._in_flight[run.id] = run
            try:
                self.worker.submit(lambda: self._execute(run), key=run.id)
            except QueueFullError:
                with self._loaded_lock:
                    if self._in_flight.get(run.id) is run:
                        del self._in_flight[run.id]
                raise
            ws.add_request(run.id)
            ws.missing_requests.discard(run.id)
            self._mark_dirty(ws)
        logger.info(f"queued {run.kind} request {run.id} for workspace {ws.id}")
        return run

    def request_overpass(self, *, layer: int = 0) -> WorkspaceRequest:
        ws = self._require_active()
        query = self.overpass.build_query(ws.selection)
        return self.process_request(WorkspaceRequest(request=OverpassTurbo(query=query), layer=layer))

    def request_geocode(self, name: str, count: int = 1, language: str | None = None) -> WorkspaceRequest:
        params = OpenMeteoParams.for_geocoding(name, count, language)
        return self.process_request(WorkspaceRequest(request=OpenMeteo(params=params)))

    def request_forecast(self, latitude: float, longitude: float, **kwargs: Any) -> WorkspaceRequest:
        params = OpenMeteoParams.for_forecast(latitude, longitude, **kwargs)
        return self.process_request(WorkspaceRequest(request=OpenMeteo(params=params)))

    def _fetch(self, run: WorkspaceRequest) -> bytes:
        kind = run.request
        if isinstance(kind, OverpassTurbo):
            return self.overpass.send(kind.query)
        if isinstance(kind, OpenMeteo):
            return self.openmeteo.fetch(kind.params)
        raise WorkspaceCoreError("OpenRouter requests are not executed by the workspace worker")

    def _execute(self, run: WorkspaceRequest) -> WorkspaceRequest:
        t0 = time.perf_counter()
        run.status = RequestStatus.ACTIVE
        try:
            run.raw_data = self._fetch(run)
            run.last_query_date = now_ts()
            run.status = RequestStatus.COMPLETED
            logger.info(f"request {run.id} completed ({len(run.raw_data)} bytes)")
        except WorkspaceCoreError as e:
            run.status = RequestStatus.FAILED
            run.error = str(e)
            if isinstance(run.request, OpenRouter):
                logger.warning(f"request {run.id}: {e}")
            else:
                logger.error(f"request {run.id} failed: {e}")
        except Exception as e:
            run.status = RequestStatus.FAILED
            run.error = str(e)
            logger.exception(f"request {run.id} crashed: {e}")
        finally:
            with self._loaded_lock:
                self.loaded_requests[run.id] = run
                if self._in_flight.get(run.id) is run:
                    del self._in_flight[run.id]
                if run.status == RequestStatus.COMPLETED:
                    self._unsaved.add(run.id)
            self._record_run(run, (time.perf_counter() - t0) * 1000.0)
        return run

    def _record_run(self, run: WorkspaceRequest, duration_ms: float) -> None:
        store = self._telemetry or get_store()
        if store is None:
            return
        store.record(
            request_id=run.id,
            kind=run.kind,
            status=run.status.value,
            duration_ms=duration_ms,
            payload_bytes=len(run.raw_data),
            error=run.error,
        )

    def request_status(self, request_id: str) -> RequestStatus | None:
        with self._loaded_lock:
            req = self._in_flight.get(request_id) or self.loaded_requests.get(request_id)
        return req.status if req is not None else None

    def get_requests(self) -> list[WorkspaceRequest]:
        ws = self.active
        if ws is None:
            return []
        with self._loaded_lock:
            return [self.loaded_requests[i] for i in sorted(ws.requests) if i in self.loaded_requests]

    def get_rendered_requests(self) -> list[WorkspaceRequest]:
        """Requests of the active workspace whose features have been parsed (possibly zero)."""
        return [r for r in self.get_requests() if r.processed]

    def get_unrendered_requests(self) -> list[WorkspaceRequest]:
        return [r for r in self.get_requests() if not r.processed]

    # -- processing ---------------------------------------------------------

    def _parse(self, req: WorkspaceRequest) -> list[MapFeature]:
        kind = req.request
        if isinstance(kind, OverpassTurbo):
            return parse_overpass(req.raw_data)
        if isinstance(kind, OpenMeteo):
            return features_from_response(kind.params, req.raw_data)
        return []

    def process_loaded(self) -> int:
        """
        Parse every loaded request that has raw data but no features yet.

        Returns how many requests were processed.
        """
        with self._loaded_lock:
            todo = [r for r in self.loaded_requests.values() if r.raw_data and not r.processed]

        for req in todo:
            try:
                features = self._parse(req)
            except ParseError as e:
                logger.error(f"request {req.id}: cannot parse response: {e}")
                features = []
            req.processed_data = FeatureStore.from_features(features)
            req.processed = True
            req.status = RequestStatus.PROCESSED
            logger.info(f"request {req.id}: {len(req.processed_data)} features")

        if todo:
            self.events.emit(ZoomChanged())
        return len(todo)

    def tick(self) -> None:
        self.worker.tick()
        self.process_loaded()
        if self.autosave:
            self.autosave_now()
        self.worker.cleanup()

    def run_until_idle(self, *, timeout_s: float = 10.0, poll_s: float = 0.005) -> bool:
        """Tick until no request is queued or running, then tick once more."""
        deadline = time.monotonic() + timeout_s
        while time.monotonic() < deadline:
            self.tick()
            if self.worker.is_idle():
                self.tick()
                return True
            time.sleep(poll_s)
        return False

    # -- persistence --------------------------------------------------------

    def save_requests(self) -> int:
        """Write completed requests that have not been written yet. Returns the count."""
        with self._loaded_lock:
            pending = [self.loaded_requests[i] for i in sorted(self._unsaved) if i in self.loaded_requests]
        written = 0
        for req in pending:
            self.store.save_request(req, overwrite=True)
            written += 1
            with self._loaded_lock:
                self._unsaved.discard(req.id)
        return written

    def save_workspace(self, ws: WorkspaceData | None = None) -> Path:
        with self._state_lock:
            ws = ws or self._require_active()
            path = self.store.save_workspace(ws)
            self._dirty.discard(ws.id)
        return path

    def autosave_now(self) -> None:
        try:
            self.save_requests()
            with self._state_lock:
                dirty = [self.workspaces[i] for i in sorted(self._dirty) if i in self.workspaces]
                for ws in dirty:
                    self.save_workspace(ws)
        except PersistenceError as e:
            logger.error(f"autosave failed; state kept in memory: {e}")

    def load_workspaces(self) -> list[WorkspaceData]:
        """
        Load every workspace and request file from the store.

        Request ids a workspace references but that have no file are flagged in
        `missing_requests`.
        """
        workspaces, requests = self.store.scan()
        with self._loaded_lock:
            for rid, req in requests.items():
                req.status = RequestStatus.COMPLETED
                self.loaded_requests[rid] = req
            known = set(self.loaded_requests) | set(self._in_flight)

        with self._state_lock:
            for ws in workspaces:
                ws.missing_requests = set(ws.requests) - known
                if ws.missing_requests:
                    logger.warning(
                        f"workspace {ws.id}: {len(ws.missing_requests)} request(s) missing on disk"
                    )
                self.workspaces[ws.id] = ws
            self.areas.rebuild(self.workspaces.values())
            if self.active_id is None and self.workspaces:
                latest = max(self.workspaces.values(), key=lambda w: (w.last_modified, w.id))
                self.active_id = latest.id

        logger.info(f"loaded {len(workspaces)} workspace(s) and {len(requests)} request(s)")
        return workspaces

    # -- host events --------------------------------------------------------

    def handle_event(self, event: Event) -> None:
        if isinstance(event, SelectionFinished):
            name = event.name or f"Workspace {len(self.workspaces) + 1}"
            self.create_workspace(name, event.selection)
        elif isinstance(event, FileDropped):
            self.import_geojson(event.path)

    def import_geojson(self, path: Path) -> int:
        try:
            features = load_geojson_file(Path(path))
        except ParseError as e:
            logger.error(f"cannot import {path}: {e}")
            return 0
        self.imported.extend(features)
        logger.info(f"imported {len(features)} features from {path}")
        self.events.emit(ZoomChanged())
        return len(features)

    # -- queries ------------------------------------------------------------

    def feature_stores(self) -> list[FeatureStore]:
        stores = [r.processed_data for r in self.get_rendered_requests()]
        if not self.imported.is_empty():
            stores.append(self.imported)
        return stores

    def get_info(self) -> dict[str, Any]:
        return queries.get_info(self._require_active(), self.feature_stores())

    def get_feature_tags(self, fid: str) -> dict[str, Any] | None:
        return queries.get_feature_tags(self.feature_stores(), fid)

    def get_feature_by_id(self, fid: str) -> MapFeature | None:
        return queries.get_feature_by_id(self.feature_stores(), fid)

    def count_features(self) -> int:
        return queries.count_features(self.feature_stores())

    def nearby_point(self, center: Coord, radius_m: float) -> list[MapFeature]:
        return queries.nearby_point(self.feature_stores(), center, radius_m)

    def features_in_bbox(
        self, min_lat: float, min_lon: float, max_lat: float, max_lon: float
    ) -> list[MapFeature]:
        return queries.features_in_bbox(self.feature_stores(), min_lat, min_lon, max_lat, max_lon)

    def features_in_polygon(self, ring: Sequence[Coord]) -> list[MapFeature]:
        return queries.features_in_polygon(self.feature_stores(), ring)

    def nearest_feature(self, c: Coord) -> tuple[MapFeature, float] | None:
        return queries.nearest_feature(self.feature_stores(), c)

    def summarize_features(self, center: Coord, radius_m: float) -> tuple[int, dict[str, int]]:
        return queries.summarize_features(self.feature_stores(), center, radius_m)

    def distance_between(self, a: Coord, b: Coord) -> float:
        return queries.distance_between(a, b)

    def shutdown(self) -> None:
        self.worker.shutdown()
