from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
from loguru import logger

from config import http_max_retries, http_timeouts, rate_limit_sleep_s
from errors import RateLimitExceeded, TransportError


@dataclass
class RateLimitedSession:
    """
    Thin wrapper over `requests.Session` with the shared HTTP policy.

    - 200 returns the body bytes.
    - 429 sleeps `rate_limit_sleep_s` and retries, at most `max_retries` times.
    - Anything else (including connection errors and timeouts) raises `TransportError`.

    `session` and `sleep` are injectable so tests never touch the network or wait.
    """

    session: Any = field(default_factory=requests.Session)
    timeout: tuple[float, float] = field(default_factory=http_timeouts)
    max_retries: int = field(default_factory=http_max_retries)
    rate_limit_sleep_s: float = field(default_factory=rate_limit_sleep_s)
    sleep: Callable[[float], None] = time.sleep

    def request(self, method: str, url: str, **kwargs: Any) -> bytes:
        attempts = 0
        while True:
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise TransportError(f"{method} {url} failed: {e}", url=url) from e

            status = int(resp.status_code)
            if status == 200:
                return bytes(resp.content or b"")

            if status == 429:
                attempts += 1
                if attempts > self.max_retries:
                    raise RateLimitExceeded(
                        f"{method} {url} still rate limited after {self.max_retries} retries",
                        url=url,
                        status=status,
                    )
                logger.warning(
                    f"429 from {url}; retry {attempts}/{self.max_retries} in {self.rate_limit_sleep_s:.1f}s"
                )
                self.sleep(self.rate_limit_sleep_s)
                continue

            raise TransportError(f"{method} {url} returned HTTP {status}", url=url, status=status)

    def get(self, url: str, **kwargs: Any) -> bytes:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> bytes:
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        close = getattr(self.session, "close", None)
        if callable(close):
            close()
