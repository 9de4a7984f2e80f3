from __future__ import annotations

import json

import pytest

from conftest import OVERPASS_TEST_URL, always, in_order
from errors import NoActiveWorkspaceError, QueueFullError, UnknownWorkspaceError
from geo.coords import Coord, haversine
from geo.selection import Circle, Rectangle
from tasks.worker import BoundedWorker
from workspace.events import FileDropped, SelectionFinished, ZoomChanged
from workspace.types import OpenRouter, OverpassTurbo, RequestStatus, WorkspaceRequest

CAMBRIDGE = Rectangle(start=Coord(lat=52.195, lon=0.120), end=Coord(lat=52.205, lon=0.145))


def _way(eid, lon, lat, d=0.001, **tags):
    return {
        "type": "way",
        "id": eid,
        "tags": tags,
        "geometry": [
            {"lat": lat, "lon": lon},
            {"lat": lat, "lon": lon + d},
            {"lat": lat + d, "lon": lon + d},
            {"lat": lat + d, "lon": lon},
            {"lat": lat, "lon": lon},
        ],
    }


TWO_HOUSES = {
    "elements": [
        _way(1, 0.130, 52.200, building="house"),
        _way(2, 0.144, 52.204, building="house", name="Far End"),
    ]
}


def _cambridge(make_workspace, responder=None, **kwargs):
    ws = make_workspace(responder or always(200, TWO_HOUSES), **kwargs)
    ws.overpass.settings.enable("Building", "house")
    ws.create_workspace("Cambridge", CAMBRIDGE)
    return ws


def test_cambridge_request_end_to_end(make_workspace):
    ws = _cambridge(make_workspace)
    req = ws.request_overpass()
    assert 'way["building"="house"]' in req.request.query
    assert ws.request_status(req.id) == RequestStatus.QUEUED

    assert ws.run_until_idle(timeout_s=5.0)

    (done,) = ws.get_rendered_requests()
    assert done.id == req.id
    assert done.status == RequestStatus.PROCESSED
    assert done.feature_count() == 2
    assert ws.get_unrendered_requests() == []
    assert ws.count_features() == 2

    method, url, _ = ws.overpass.http.session.calls[0]
    assert (method, url) == ("POST", OVERPASS_TEST_URL)


def test_nearby_point_after_load(make_workspace):
    ws = _cambridge(make_workspace)
    ws.request_overpass()
    assert ws.run_until_idle(timeout_s=5.0)

    near = ws.nearby_point(Coord(lat=52.200, lon=0.132), 500.0)
    assert [f.id for f in near] == ["1"]
    assert {f.id for f in ws.nearby_point(Coord(lat=52.200, lon=0.132), 2000.0)} == {"1", "2"}

    f, meters = ws.nearest_feature(Coord(lat=52.2045, lon=0.1445))
    assert f.id == "2"
    assert meters < 10.0

    assert ws.get_feature_tags("2") == {"building": "house", "name": "Far End"}
    assert ws.get_feature_tags("nope") is None


def test_unparseable_response_processes_to_zero_features(make_workspace):
    ws = _cambridge(make_workspace, always(200, b"<html>busy</html>"))
    req = ws.request_overpass()
    assert ws.run_until_idle(timeout_s=5.0)

    (done,) = ws.get_rendered_requests()
    assert done.id == req.id
    assert done.feature_count() == 0


def test_failed_transport_is_not_rendered_or_saved(make_workspace, tmp_path):
    ws = _cambridge(make_workspace, always(500, b"oops"))
    req = ws.request_overpass()
    assert ws.run_until_idle(timeout_s=5.0)

    assert ws.request_status(req.id) == RequestStatus.FAILED
    assert ws.get_rendered_requests() == []
    (pending,) = ws.get_unrendered_requests()
    assert "HTTP 500" in pending.error
    assert not ws.store.request_path(req.id).exists()


def test_rate_limited_request_eventually_completes(make_workspace):
    ws = _cambridge(make_workspace, in_order((429, b""), (429, b""), (200, TWO_HOUSES)))
    ws.request_overpass()
    assert ws.run_until_idle(timeout_s=5.0)
    assert ws.count_features() == 2
    assert ws.overpass.http.session.sleeps == [5.0, 5.0]


def test_zero_radius_circle_still_submits(make_workspace):
    ws = make_workspace(always(200, {"elements": []}))
    ws.overpass.settings.enable("Amenity", "cafe")
    c = Coord(lat=52.2, lon=0.13)
    ws.create_workspace("dot", Circle(center=c, edge=c))
    req = ws.request_overpass()
    assert "around:0, 52.200, 0.130" in req.request.query
    assert ws.run_until_idle(timeout_s=5.0)
    assert ws.request_status(req.id) == RequestStatus.PROCESSED


def test_same_request_twice_runs_twice(make_workspace):
    ws = _cambridge(make_workspace)
    req = WorkspaceRequest(request=OverpassTurbo(query=ws.overpass.build_query(CAMBRIDGE)))
    ws.process_request(req)
    ws.process_request(req)
    assert ws.run_until_idle(timeout_s=5.0)

    assert len(ws.overpass.http.session.calls) == 2
    assert ws.active.requests == {req.id}
    assert req.id in ws.loaded_requests
    assert ws.count_features() == 2


def test_concurrency_cap_and_all_requests_loaded(make_workspace):
    ws = _cambridge(make_workspace, max_concurrent=3)
    ids = [ws.request_overpass().id for _ in range(10)]
    peak = 0
    for _ in range(2000):
        ws.tick()
        peak = max(peak, ws.worker.active)
        assert ws.worker.active <= 3
        if ws.worker.is_idle():
            break
    assert ws.run_until_idle(timeout_s=5.0)
    assert set(ids) <= set(ws.loaded_requests)
    assert ws.worker.peak_active <= 3


def test_requests_need_an_active_workspace(make_workspace):
    ws = make_workspace()
    with pytest.raises(NoActiveWorkspaceError):
        ws.request_overpass()
    with pytest.raises(NoActiveWorkspaceError):
        ws.add_message("user", "hi")
    with pytest.raises(UnknownWorkspaceError):
        ws.select_workspace("missing")


def test_openrouter_requests_fail_without_crashing(make_workspace):
    ws = _cambridge(make_workspace)
    req = ws.process_request(WorkspaceRequest(request=OpenRouter()))
    assert ws.run_until_idle(timeout_s=5.0)
    assert ws.request_status(req.id) == RequestStatus.FAILED
    assert ws.overpass.http.session.calls == []


def test_geocode_request_yields_point_features(make_workspace):
    body = {"results": [{"id": 2653941, "name": "Cambridge", "latitude": 52.2, "longitude": 0.1167, "country": "UK"}]}
    ws = _cambridge(make_workspace, always(200, body))
    req = ws.request_geocode("Cambridge")
    assert ws.run_until_idle(timeout_s=5.0)

    f = ws.get_feature_by_id("geocode-2653941")
    assert f is not None
    assert f.properties["name"] == "Cambridge"
    method, url, kwargs = ws.openmeteo.http.session.calls[0]
    assert method == "GET"
    assert kwargs["params"]["name"] == "Cambridge"
    assert ws.request_status(req.id) == RequestStatus.PROCESSED


def test_selection_finished_creates_and_selects_workspace(make_workspace):
    ws = make_workspace()
    seen = []
    ws.events.subscribe(seen.append)

    ws.events.emit(SelectionFinished(selection=CAMBRIDGE, name="From map"))
    assert ws.active is not None
    assert ws.active.name == "From map"
    assert ws.workspaces_at(Coord(lat=52.2, lon=0.13)) == [ws.active]
    assert ws.workspaces_at(Coord(lat=48.0, lon=2.0)) == []

    other = ws.create_workspace("Second", CAMBRIDGE, select=False)
    ws.select_workspace(other.id)
    assert ws.active_id == other.id
    assert any(isinstance(e, ZoomChanged) for e in seen)


def test_file_dropped_imports_geojson(make_workspace, tmp_path):
    ws = _cambridge(make_workspace)
    p = tmp_path / "drop.geojson"
    p.write_text(
        json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    {"type": "Feature", "id": "pin", "properties": {"amenity": "cafe"},
                     "geometry": {"type": "Point", "coordinates": [0.131, 52.201]}}
                ],
            }
        ),
        encoding="utf-8",
    )
    ws.events.emit(FileDropped(path=p))
    assert ws.count_features() == 1
    assert ws.get_feature_tags("pin") == {"amenity": "cafe"}

    bad = tmp_path / "bad.geojson"
    bad.write_text("{", encoding="utf-8")
    assert ws.import_geojson(bad) == 0


def test_property_colors(make_workspace):
    ws = _cambridge(make_workspace)
    ws.request_overpass()
    assert ws.run_until_idle(timeout_s=5.0)
    house = ws.get_feature_by_id("1")

    assert ws.color_for(house) is None
    ws.set_property_color("building", "house", (255, 0, 0, 255))
    assert ws.color_for(house) == (255, 0, 0, 255)
    with pytest.raises(ValueError):
        ws.set_property_color("building", "house", (256, 0, 0, 255))

    ws.remove_property_color("building", "house")
    assert ws.color_for(house) is None


def test_mutations_keep_last_modified_after_creation(make_workspace):
    ws = _cambridge(make_workspace)
    data = ws.active
    ws.rename_workspace("Renamed")
    ws.add_message("user", "hello")
    assert data.name == "Renamed"
    assert data.last_modified >= data.creation_date
    assert data.messages[-1].content == "hello"


def test_delete_workspace_removes_file(make_workspace):
    ws = _cambridge(make_workspace)
    wid = ws.active_id
    ws.tick()
    assert ws.store.workspace_path(wid).exists()

    assert ws.delete_workspace(wid)
    assert ws.active is None
    assert not ws.store.workspace_path(wid).exists()
    assert not ws.delete_workspace(wid)


FAR_NODES = {
    "elements": [
        {"type": "node", "id": 31, "tags": {"place": "islet"}, "geometry": [{"lat": 0.0, "lon": 179.999}]},
        {"type": "node", "id": 32, "tags": {"place": "island"}, "geometry": [{"lat": 84.0, "lon": 60.0}]},
    ]
}


def test_nearby_point_across_antimeridian_and_at_high_latitude(make_workspace):
    ws = _cambridge(make_workspace, always(200, FAR_NODES))
    ws.request_overpass()
    assert ws.run_until_idle(timeout_s=5.0)

    west = Coord(lat=0.0, lon=-179.999)
    assert [f.id for f in ws.nearby_point(west, 1000.0)] == ["31"]
    assert ws.summarize_features(west, 1000.0) == (1, {"place": 1})

    arctic = Coord(lat=80.0, lon=0.0)
    r = haversine(arctic, Coord(lat=84.0, lon=60.0)) + 1.0
    assert [f.id for f in ws.nearby_point(arctic, r)] == ["32"]


def test_circle_workspaces_found_across_antimeridian_and_near_pole(make_workspace):
    ws = make_workspace()
    dateline = ws.create_workspace(
        "Dateline", Circle(center=Coord(lat=0.0, lon=179.999), edge=Coord(lat=0.0, lon=-179.999)), select=False
    )
    arctic = ws.create_workspace(
        "Arctic", Circle(center=Coord(lat=80.0, lon=0.0), edge=Coord(lat=84.0, lon=60.0)), select=False
    )
    assert dateline in ws.workspaces_at(Coord(lat=0.0, lon=-179.9995))
    assert ws.workspaces_at(Coord(lat=84.0, lon=60.0)) == [arctic]


class _InlineWorker(BoundedWorker):
    """Runs each job as soon as it is queued, like a runner tick racing the submitter."""

    def submit(self, fn, *, key=""):
        future = super().submit(fn, key=key)
        assert self.run_until_idle(timeout_s=5.0)
        return future


def test_fast_runs_do_not_stay_in_flight(make_workspace):
    ws = _cambridge(make_workspace)
    ws.worker.shutdown()
    ws.worker = _InlineWorker(1, name="inline")

    failed = ws.process_request(WorkspaceRequest(request=OpenRouter()))
    done = ws.request_overpass()
    assert ws.request_status(failed.id) == RequestStatus.FAILED
    assert ws.loaded_requests[done.id].status == RequestStatus.COMPLETED
    assert ws._in_flight == {}


def test_rejected_submit_is_not_tracked(make_workspace):
    ws = _cambridge(make_workspace)
    ws.worker.shutdown()
    ws.worker = BoundedWorker(1, name="tiny", max_pending=1)

    queued = ws.request_overpass()
    with pytest.raises(QueueFullError):
        ws.request_overpass()
    assert set(ws._in_flight) == {queued.id}
    assert ws.active.requests == {queued.id}
