from __future__ import annotations

from concurrent.futures import Future

from loguru import logger

from config import max_pending, overpass_max_concurrent
from features.loaders import parse_overpass
from features.types import MapFeature
from geo.selection import Selection
from overpass.client import OverpassClient
from overpass.query import build_query
from overpass.settings import OverpassSettings
from tasks.worker import BoundedWorker


class OverpassWorker:
    """
    Overpass-only queue: each job is a (selection, settings snapshot) pair and
    resolves to the parsed features.

    The query is built at submit time so validation errors surface immediately
    and later settings changes do not leak into queued jobs.
    """

    def __init__(
        self,
        client: OverpassClient | None = None,
        *,
        max_concurrent: int | None = None,
    ):
        self.client = client or OverpassClient()
        self.worker = BoundedWorker(
            max_concurrent or overpass_max_concurrent(),
            name="overpass",
            max_pending=max_pending(),
        )

    def submit(
        self, selection: Selection, settings: OverpassSettings | None = None
    ) -> "Future[list[MapFeature]]":
        query = build_query(selection, (settings or self.client.settings).snapshot())
        logger.info(f"queued overpass query ({len(query)} chars)")

        def run() -> list[MapFeature]:
            return parse_overpass(self.client.send(query))

        return self.worker.submit(run, key="overpass")

    def tick(self) -> bool:
        started = self.worker.tick()
        self.worker.cleanup()
        return started

    def shutdown(self) -> None:
        self.worker.shutdown()
