from __future__ import annotations

import os
from pathlib import Path


DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"
DEFAULT_GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
DEFAULT_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
DEFAULT_VECTOR_TILE_URL = "https://tiles.openfreemap.org/planet/20250122_001001_pt"


def _env_float(name: str, default: float, *, min_v: float, max_v: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        v = float(raw)
    except ValueError:
        return default
    return max(min_v, min(max_v, v))


def _env_int(name: str, default: int, *, min_v: int, max_v: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        v = int(raw)
    except ValueError:
        return default
    return max(min_v, min(max_v, v))


def _env_flag(name: str, default: bool) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v not in {"0", "false", "no", "off"}


def workspace_dir() -> Path:
    """Directory holding `WS_*.json` and `RQ_*.json` files."""
    return Path(os.getenv("MAPWS_WORKSPACE_DIR") or ".")


def cache_dir() -> Path:
    return Path(os.getenv("MAPWS_CACHE_DIR") or "cache")


def overpass_url() -> str:
    return os.getenv("MAPWS_OVERPASS_URL") or DEFAULT_OVERPASS_URL


def geocoding_url() -> str:
    return os.getenv("MAPWS_GEOCODING_URL") or DEFAULT_GEOCODING_URL


def forecast_url() -> str:
    return os.getenv("MAPWS_FORECAST_URL") or DEFAULT_FORECAST_URL


def vector_tile_url() -> str:
    return os.getenv("MAPWS_VECTOR_TILE_URL") or DEFAULT_VECTOR_TILE_URL


def http_timeouts() -> tuple[float, float]:
    """(connect, read) timeouts in seconds, as accepted by `requests`."""
    connect = _env_float("MAPWS_HTTP_CONNECT_TIMEOUT", 5.0, min_v=0.1, max_v=600.0)
    read = _env_float("MAPWS_HTTP_READ_TIMEOUT", 5.0, min_v=0.1, max_v=600.0)
    return connect, read


def http_max_retries() -> int:
    """How many 429 responses are tolerated before giving up."""
    return _env_int("MAPWS_HTTP_MAX_RETRIES", 60, min_v=0, max_v=10_000)


def rate_limit_sleep_s() -> float:
    return _env_float("MAPWS_RATE_LIMIT_SLEEP", 5.0, min_v=0.0, max_v=600.0)


def worker_max_concurrent() -> int:
    return _env_int("MAPWS_WORKER_MAX_CONCURRENT", 4, min_v=1, max_v=64)


def overpass_max_concurrent() -> int:
    return _env_int("MAPWS_OVERPASS_MAX_CONCURRENT", 3, min_v=1, max_v=64)


def tile_max_concurrent() -> int:
    return _env_int("MAPWS_TILE_MAX_CONCURRENT", 4, min_v=1, max_v=64)


def max_pending() -> int | None:
    """
    Optional cap on queued (not yet dispatched) requests.

    Unset or 0 means unbounded.
    """
    v = _env_int("MAPWS_MAX_PENDING", 0, min_v=0, max_v=1_000_000)
    return v or None


def autosave_enabled() -> bool:
    return _env_flag("MAPWS_AUTOSAVE", True)


def tick_interval_s() -> float:
    return _env_float("MAPWS_TICK_INTERVAL", 0.1, min_v=0.005, max_v=60.0)


def tile_size() -> int:
    return _env_int("MAPWS_TILE_SIZE", 256, min_v=16, max_v=4096)


def log_level() -> str:
    return (os.getenv("MAPWS_LOG_LEVEL") or "INFO").strip().upper()
