from __future__ import annotations

import os
from pathlib import Path

from config import workspace_dir


def telemetry_path() -> Path:
    # Kept next to the workspace files unless overridden.
    return Path(
        os.getenv("MAPWS_TELEMETRY_PATH")
        or (workspace_dir() / "telemetry" / "telemetry.duckdb")
    )


def telemetry_enabled() -> bool:
    v = (os.getenv("MAPWS_TELEMETRY") or "1").strip().lower()
    return v not in {"0", "false", "no", "off"}
