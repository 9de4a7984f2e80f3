from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import always
from main import create_app

RESPONSE = {
    "elements": [
        {
            "type": "way",
            "id": 21,
            "tags": {"building": "house"},
            "geometry": [
                {"lat": 52.200, "lon": 0.130},
                {"lat": 52.200, "lon": 0.131},
                {"lat": 52.201, "lon": 0.131},
                {"lat": 52.200, "lon": 0.130},
            ],
        }
    ]
}

CAMBRIDGE = {
    "type": "rectangle",
    "start": {"lat": 52.195, "lon": 0.120},
    "end": {"lat": 52.205, "lon": 0.145},
}


@pytest.fixture
def api(make_workspace):
    ws = make_workspace(always(200, RESPONSE))
    with TestClient(create_app(ws, run_ticks=False)) as client:
        yield client, ws


def test_requests_need_a_workspace(api):
    client, _ = api
    assert client.post("/requests/overpass", json={}).status_code == 409
    assert client.get("/query/info").status_code == 409
    assert client.post("/workspaces/missing/select").status_code == 404


def test_workspace_request_and_queries(api):
    client, ws = api
    resp = client.post("/workspaces", json={"name": "Cambridge", "selection": CAMBRIDGE})
    assert resp.status_code == 200
    created = resp.json()
    assert created["active"] is True
    assert created["selection"]["selection_type"] == "RECTANGLE"

    # Nothing enabled yet.
    resp = client.post("/requests/overpass", json={})
    assert resp.status_code == 422
    assert "No valid settings provided" in resp.json()["detail"]

    resp = client.put("/settings/Building", json={"items": {"house": True}})
    assert resp.json()["enabled"] == ["house"]

    resp = client.post("/requests/overpass", json={"layer": 1})
    assert resp.status_code == 200
    rid = resp.json()["id"]
    assert resp.json()["status"] == "queued"

    assert ws.run_until_idle(timeout_s=5.0)

    assert client.get(f"/requests/{rid}/status").json() == {"id": rid, "status": "processed"}
    (listed,) = client.get("/requests").json()
    assert listed["features"] == 1
    assert listed["layer"] == 1

    info = client.get("/query/info").json()
    assert info["feature_count"] == 1
    assert info["request_count"] == 1

    near = client.get("/query/nearby", params={"lat": 52.2003, "lon": 0.1306, "radius": 100}).json()
    assert [f["id"] for f in near] == ["21"]

    box = client.get(
        "/query/bbox", params={"min_lat": 52.19, "min_lon": 0.12, "max_lat": 52.21, "max_lon": 0.14}
    ).json()
    assert [f["id"] for f in box] == ["21"]

    ring = [{"lat": 52.19, "lon": 0.12}, {"lat": 52.19, "lon": 0.14}, {"lat": 52.21, "lon": 0.14}]
    assert [f["id"] for f in client.post("/query/polygon", json={"ring": ring}).json()] == ["21"]
    ring = [{"lat": 52.202, "lon": 0.12}, {"lat": 52.202, "lon": 0.14}, {"lat": 52.21, "lon": 0.14}]
    assert client.post("/query/polygon", json={"ring": ring}).json() == []

    nearest = client.get("/query/nearest", params={"lat": 52.2, "lon": 0.13}).json()
    assert nearest["feature"]["id"] == "21"

    assert client.get("/features/21/tags").json() == {"building": "house"}
    assert client.get("/features/nope/tags").status_code == 404

    resp = client.post("/command", json={"text": "rq: cnt"})
    assert resp.json() == {"message": "Feature count: 1", "feature_ids": []}


def test_settings_bulk_toggles(api):
    client, _ = api
    assert client.put("/settings/Amenity", json={"mode": "all"}).json()["all"] is True
    settings = client.get("/settings").json()
    assert settings["Amenity"]["all"] is True
    assert settings["ManMade"]["key"] == "man_made"

    assert client.put("/settings/Nope", json={"mode": "all"}).status_code == 404
    assert client.put("/settings/Amenity", json={"items": {"nope": True}}).status_code == 404


def test_colors_and_messages(api):
    client, ws = api
    client.post("/workspaces", json={"name": "W", "selection": CAMBRIDGE})

    resp = client.put("/workspaces/active/colors", json={"key": "building", "value": "house", "color": [1, 2, 3, 255]})
    assert resp.json() == {"building=house": [1, 2, 3, 255]}
    resp = client.put("/workspaces/active/colors", json={"key": "building", "value": "house", "color": [1, 2, 3, 300]})
    assert resp.status_code == 422
    assert client.put("/workspaces/active/colors", json={"key": "building", "value": "house"}).json() == {}

    assert client.post("/workspaces/active/messages", json={"role": "user", "content": "hi"}).status_code == 200
    assert ws.active.messages[-1].content == "hi"


def test_select_and_delete_workspaces(api):
    client, ws = api
    a = client.post("/workspaces", json={"name": "A", "selection": CAMBRIDGE}).json()
    b = client.post("/workspaces", json={"name": "B", "selection": {"type": "none"}}).json()
    assert ws.active_id == b["id"]

    assert client.post(f"/workspaces/{a['id']}/select").json()["active"] is True
    assert {w["name"] for w in client.get("/workspaces").json()} == {"A", "B"}

    assert client.delete(f"/workspaces/{a['id']}").json() == {"deleted": a["id"]}
    assert client.delete(f"/workspaces/{a['id']}").status_code == 404


def test_forecast_request(make_workspace):
    forecast = {"latitude": 52.2, "longitude": 0.12, "current": {"temperature_2m": 11.0}}
    ws = make_workspace(always(200, forecast))
    with TestClient(create_app(ws, run_ticks=False)) as client:
        client.post("/workspaces", json={"name": "W", "selection": CAMBRIDGE})
        resp = client.post("/requests/forecast", json={"latitude": 52.2, "longitude": 0.12, "hourly": ["rain"]})
        assert resp.json()["kind"] == "openmeteo"
        assert client.post("/requests/forecast", json={"latitude": 91, "longitude": 0}).status_code == 422

        assert ws.run_until_idle(timeout_s=5.0)
        assert client.get("/features/forecast-52.2000-0.1200/tags").json()["current"] == {"temperature_2m": 11.0}
        params = ws.openmeteo.http.session.calls[0][2]["params"]
        assert params["hourly"] == "rain"


def test_telemetry_summary_when_disabled(api):
    client, _ = api
    assert client.get("/telemetry/summary").json() == {"enabled": False, "rows": []}
