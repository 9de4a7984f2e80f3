from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Union

from loguru import logger

from geo.selection import Selection


@dataclass(frozen=True)
class SelectionFinished:
    selection: Selection
    name: str | None = None


@dataclass(frozen=True)
class ZoomChanged:
    """Features changed; the host should redraw."""


@dataclass(frozen=True)
class FileDropped:
    path: Path


Event = Union[SelectionFinished, ZoomChanged, FileDropped]
Listener = Callable[[Event], None]


class EventBus:
    """
    Minimal publish/subscribe between the core and its host.

    Listeners run synchronously on the publishing thread; a failing listener is
    logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: Event) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"event listener failed for {type(event).__name__}")
