from __future__ import annotations

CREATE_RUNS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS request_runs (
  ts_ms BIGINT,
  request_id TEXT,
  kind TEXT,
  status TEXT,
  duration_ms DOUBLE,
  payload_bytes BIGINT,
  error TEXT
);
"""

SUMMARY_SQL_TEMPLATE = """
SELECT
  kind,
  COUNT(*) AS n,
  AVG(duration_ms) AS avg_ms,
  quantile_cont(duration_ms, 0.50) AS p50_ms,
  quantile_cont(duration_ms, 0.95) AS p95_ms,
  AVG(payload_bytes) AS avg_bytes,
  AVG(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failure_rate
FROM request_runs
{where_sql}
GROUP BY kind
ORDER BY kind
"""

INSERT_RUN_SQL = """
INSERT INTO request_runs
  (ts_ms, request_id, kind, status, duration_ms, payload_bytes, error)
VALUES (?, ?, ?, ?, ?, ?, ?)
"""
