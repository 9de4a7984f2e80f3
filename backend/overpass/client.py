from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from config import overpass_url
from geo.selection import Selection
from net.http import RateLimitedSession
from overpass.query import build_query
from overpass.settings import OverpassSettings


@dataclass
class OverpassClient:
    """
    Builds queries from the current settings and sends them to the Overpass API.
    """

    settings: OverpassSettings = field(default_factory=OverpassSettings.default)
    http: RateLimitedSession = field(default_factory=RateLimitedSession)
    url: str = field(default_factory=overpass_url)

    def build_query(self, selection: Selection) -> str:
        return build_query(selection, self.settings)

    def send(self, query: str) -> bytes:
        """POST the raw query body; returns the response bytes."""
        logger.debug(f"POST {self.url} ({len(query)} chars)")
        return self.http.post(
            self.url,
            data=query.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )
