from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from errors import QueueFullError


@dataclass
class _Job:
    key: str
    fn: Callable[[], Any]
    future: Future = field(default_factory=Future)


class BoundedWorker:
    """
    FIFO job queue drained by a host-driven `tick()`, with at most `max_concurrent`
    jobs running on a thread pool.

    Notes:
    - `submit()` never blocks; it only appends to the queue (or raises `QueueFullError`
      when `max_pending` is set and reached).
    - Each `tick()` dispatches at most one job, and only when a slot is free.
    - The active counter is decremented on every exit path of a job.
    - Two locks: one for the pending queue, one for the active counter. Neither is
      held while a job runs.
    """

    def __init__(
        self,
        max_concurrent: int,
        *,
        name: str = "worker",
        max_pending: int | None = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.name = name
        self.max_concurrent = int(max_concurrent)
        self.max_pending = max_pending
        self._pending: deque[_Job] = deque()
        self._pending_lock = threading.Lock()
        self._active = 0
        self._active_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._running: list[Future] = []
        self._peak_active = 0
        self._pool = ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix=name
        )

    @property
    def active(self) -> int:
        with self._active_lock:
            return self._active

    @property
    def peak_active(self) -> int:
        with self._active_lock:
            return self._peak_active

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def is_idle(self) -> bool:
        return self.pending == 0 and self.active == 0

    def submit(self, fn: Callable[[], Any], *, key: str = "") -> Future:
        job = _Job(key=key, fn=fn)
        with self._pending_lock:
            if self.max_pending is not None and len(self._pending) >= self.max_pending:
                raise QueueFullError(
                    f"{self.name}: {len(self._pending)} jobs already pending"
                )
            self._pending.append(job)
        return job.future

    def tick(self) -> bool:
        """
        Dispatch the queue head if a slot is free. Returns True when a job started.
        """
        with self._tick_lock:
            with self._active_lock:
                if self._active >= self.max_concurrent:
                    return False
            with self._pending_lock:
                if not self._pending:
                    return False
                job = self._pending.popleft()
            with self._active_lock:
                self._active += 1
                self._peak_active = max(self._peak_active, self._active)

            try:
                handle = self._pool.submit(self._run, job)
            except RuntimeError:
                # Pool already shut down.
                with self._active_lock:
                    self._active -= 1
                job.future.cancel()
                raise
            self._running.append(handle)
            return True

    def _run(self, job: _Job) -> None:
        try:
            if not job.future.set_running_or_notify_cancel():
                return
            try:
                result = job.fn()
            except Exception as e:
                logger.exception(f"{self.name}: job {job.key or '?'} failed: {e}")
                job.future.set_exception(e)
            else:
                job.future.set_result(result)
        finally:
            with self._active_lock:
                self._active -= 1

    def cleanup(self) -> int:
        """Forget finished task handles. Returns how many were dropped."""
        with self._tick_lock:
            before = len(self._running)
            self._running = [h for h in self._running if not h.done()]
            return before - len(self._running)

    def run_until_idle(self, *, timeout_s: float = 10.0, poll_s: float = 0.005) -> bool:
        """
        Keep ticking until nothing is pending or running. Returns False on timeout.
        """
        deadline = time.monotonic() + timeout_s
        while time.monotonic() < deadline:
            self.tick()
            self.cleanup()
            if self.is_idle():
                return True
            time.sleep(poll_s)
        return self.is_idle()

    def shutdown(self, *, wait: bool = True) -> None:
        with self._pending_lock:
            dropped = list(self._pending)
            self._pending.clear()
        for job in dropped:
            job.future.cancel()
        self._pool.shutdown(wait=wait)
