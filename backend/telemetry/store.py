from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb
from loguru import logger

from telemetry.sql import CREATE_RUNS_TABLE_SQL, INSERT_RUN_SQL, SUMMARY_SQL_TEMPLATE

BATCH_ROWS = 250
MAX_QUEUED_ROWS = 10_000


def _safe_float(v) -> float | None:
    try:
        if v is None:
            return None
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class TelemetryStore:
    """
    Request-run telemetry in DuckDB.

    `record()` only enqueues; a single writer thread batches inserts.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _q: "queue.Queue[tuple]" = field(
        default_factory=lambda: queue.Queue(maxsize=MAX_QUEUED_ROWS), repr=False
    )
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _worker: threading.Thread | None = field(default=None, repr=False)

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_RUNS_TABLE_SQL)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop.clear()
        self._worker = threading.Thread(
            target=self._run, name="telemetry-writer", daemon=True
        )
        self._worker.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        """
        Stop the writer thread; queued rows are flushed first.
        """
        self._stop.set()
        w = self._worker
        if w is not None and w.is_alive():
            w.join(timeout=timeout_s)
        self._worker = None

    def record(
        self,
        *,
        request_id: str,
        kind: str,
        status: str,
        duration_ms: float,
        payload_bytes: int = 0,
        error: str | None = None,
    ) -> None:
        self.start()
        try:
            self._q.put_nowait(
                (
                    int(time.time() * 1000),
                    str(request_id),
                    str(kind),
                    str(status),
                    float(duration_ms),
                    int(payload_bytes),
                    error,
                )
            )
        except queue.Full:
            # drop telemetry on overload
            logger.debug("telemetry queue full; dropping row")

    def flush(self, *, timeout_s: float = 2.0) -> bool:
        """
        Block until every recorded row has been written. Returns False on timeout.
        """
        deadline = time.monotonic() + timeout_s
        while self._q.unfinished_tasks:
            if self._worker is None or time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(self, *, kind: str | None = None, since_ms: int | None = None) -> list[dict[str, Any]]:
        where = []
        params: list[Any] = []
        if kind:
            where.append("kind = ?")
            params.append(kind)
        if since_ms is not None:
            where.append("ts_ms >= ?")
            params.append(int(since_ms))
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)
        out: list[dict[str, Any]] = []
        for kind_v, n, avg_ms, p50, p95, avg_bytes, failure_rate in rows:
            out.append(
                {
                    "kind": kind_v,
                    "n": int(n),
                    "avgMs": _safe_float(avg_ms),
                    "p50Ms": _safe_float(p50),
                    "p95Ms": _safe_float(p95),
                    "avgPayloadKB": _safe_float(avg_bytes) / 1024.0
                    if avg_bytes is not None
                    else None,
                    "failureRate": _safe_float(failure_rate),
                }
            )
        return out

    def reset(self) -> None:
        # Stop the writer first so it can't write to a closed connection.
        self.stop(timeout_s=2.0)
        with self._lock:
            self.conn.close()
            self.path.unlink(missing_ok=True)

    def _drain(self, limit: int | None) -> list[tuple]:
        rows: list[tuple] = []
        while limit is None or len(rows) < limit:
            try:
                rows.append(self._q.get_nowait())
            except queue.Empty:
                break
        return rows

    def _write(self, rows: list[tuple]) -> None:
        try:
            with self._lock:
                self.conn.executemany(INSERT_RUN_SQL, rows)
                # Readers on other connections see rows only after a checkpoint.
                self.conn.execute("CHECKPOINT;")
        except duckdb.Error as e:
            logger.warning(f"telemetry write of {len(rows)} rows failed: {e}")
        finally:
            for _ in rows:
                self._q.task_done()

    def _run(self) -> None:
        self.ensure_schema()
        while not self._stop.is_set():
            try:
                first = self._q.get(timeout=0.1)
            except queue.Empty:
                continue
            self._write([first, *self._drain(BATCH_ROWS - 1)])
        rest = self._drain(None)
        if rest:
            self._write(rest)
