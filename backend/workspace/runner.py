from __future__ import annotations

import threading

from loguru import logger

from config import tick_interval_s
from workspace.workspace import Workspace


class WorkspaceRunner:
    """
    Calls `Workspace.tick()` on a background thread for hosts without their own loop.
    """

    def __init__(self, workspace: Workspace, *, interval_s: float | None = None):
        self.workspace = workspace
        self.interval_s = interval_s or tick_interval_s()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="workspace-tick", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None and t.is_alive():
            t.join(timeout=timeout_s)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.workspace.tick()
            except Exception:
                # The host loop must survive a bad tick.
                logger.exception("workspace tick failed")
            self._stop.wait(self.interval_s)
