import json
import sys
import threading
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `geo.*`, `workspace.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from apis.openmeteo import OpenMeteoClient  # noqa: E402
from net.http import RateLimitedSession  # noqa: E402
from overpass.client import OverpassClient  # noqa: E402
from tasks.worker import BoundedWorker  # noqa: E402
from workspace.persistence import WorkspaceStore  # noqa: E402
from workspace.workspace import Workspace  # noqa: E402

OVERPASS_TEST_URL = "http://overpass.test/api/interpreter"


class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b""):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """
    Stands in for `requests.Session`.

    `responder(method, url, kwargs)` returns `(status, body)` or raises.
    """

    def __init__(self, responder):
        self._responder = responder
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str, dict]] = []
        self.sleeps: list[float] = []

    def request(self, method, url, **kwargs):
        with self._lock:
            self.calls.append((method, url, kwargs))
        status, body = self._responder(method, url, kwargs)
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode("utf-8")
        return FakeResponse(status, body)

    def close(self):
        pass


def in_order(*responses):
    """Responder replaying `(status, body)` pairs; the last one repeats."""
    items = list(responses)
    lock = threading.Lock()

    def responder(method, url, kwargs):
        with lock:
            return items.pop(0) if len(items) > 1 else items[0]

    return responder


def always(status, body=b""):
    return lambda method, url, kwargs: (status, body)


@pytest.fixture(autouse=True)
def _telemetry_off(monkeypatch):
    monkeypatch.setenv("MAPWS_TELEMETRY", "0")


@pytest.fixture
def make_http():
    def _make(responder, *, max_retries=5):
        session = FakeSession(responder)
        return RateLimitedSession(
            session=session,
            timeout=(1.0, 1.0),
            max_retries=max_retries,
            rate_limit_sleep_s=5.0,
            sleep=session.sleeps.append,
        )

    return _make


@pytest.fixture
def make_workspace(tmp_path, make_http):
    created = []

    def _make(responder=None, *, root=None, max_concurrent=4, autosave=True):
        http = make_http(responder or always(200, {"elements": []}))
        ws = Workspace(
            store=WorkspaceStore(root=root or tmp_path),
            overpass=OverpassClient(http=http, url=OVERPASS_TEST_URL),
            openmeteo=OpenMeteoClient(
                http=http,
                geocoding_url="http://geocoding.test/v1/search",
                forecast_url="http://forecast.test/v1/forecast",
            ),
            worker=BoundedWorker(max_concurrent, name="test-requests"),
            autosave=autosave,
        )
        created.append(ws)
        return ws

    yield _make
    for ws in created:
        ws.shutdown()
