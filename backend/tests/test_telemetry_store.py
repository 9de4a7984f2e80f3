from __future__ import annotations

import queue
import threading

import duckdb

from telemetry.singleton import get_store, reset_store
from telemetry.store import TelemetryStore


def test_telemetry_store_writes_rows(tmp_path, monkeypatch):
    db_path = tmp_path / "telemetry.duckdb"
    monkeypatch.setenv("MAPWS_TELEMETRY_PATH", str(db_path))
    monkeypatch.setenv("MAPWS_TELEMETRY", "1")

    store = get_store()
    assert store is not None

    store.record(request_id="r1", kind="overpass", status="processed", duration_ms=12.5, payload_bytes=2048)
    store.record(request_id="r2", kind="overpass", status="failed", duration_ms=7.5, error="HTTP 504")
    store.flush(timeout_s=2.0)

    # Use the existing connection; DuckDB disallows opening the same file with different configs.
    n = int(store.conn.execute("select count(*) from request_runs").fetchone()[0])
    assert n == 2

    row = store.conn.execute("select kind, error from request_runs where request_id = 'r2'").fetchone()
    assert row == ("overpass", "HTTP 504")

    (summary,) = store.summary(kind="overpass")
    assert summary["n"] == 2
    assert summary["failureRate"] == 0.5
    assert summary["avgMs"] == 10.0
    assert summary["avgPayloadKB"] == 1.0

    reset_store()


def test_telemetry_disabled_returns_none(monkeypatch):
    monkeypatch.setenv("MAPWS_TELEMETRY", "0")
    assert get_store() is None


def test_telemetry_reset_deletes_db(tmp_path, monkeypatch):
    db_path = tmp_path / "telemetry.duckdb"
    monkeypatch.setenv("MAPWS_TELEMETRY_PATH", str(db_path))
    monkeypatch.setenv("MAPWS_TELEMETRY", "1")

    store = get_store()
    assert store is not None
    store.record(request_id="r1", kind="openmeteo", status="completed", duration_ms=3.0)
    assert store.path.resolve() == db_path.resolve()

    reset_store()
    assert not db_path.exists()


def test_record_drops_rows_when_queue_is_full(tmp_path):
    # An unstarted writer keeps `record()` from draining the queue.
    store = TelemetryStore(
        path=tmp_path / "t.duckdb",
        conn=duckdb.connect(":memory:"),
        _q=queue.Queue(maxsize=2),
        _worker=threading.Thread(target=lambda: None),
    )
    for i in range(3):
        store.record(request_id=f"r{i}", kind="overpass", status="processed", duration_ms=1.0)
    assert store._q.qsize() == 2
    assert [store._q.get_nowait()[1] for _ in range(2)] == ["r0", "r1"]
    store.conn.close()
