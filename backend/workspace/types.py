from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from apis.openmeteo import OpenMeteoParams
from features.store import FeatureStore
from geo.bbox import BBox
from geo.selection import NoSelection, Selection

RGBA = tuple[int, int, int, int]


def now_ts() -> int:
    return int(time.time())


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    refusal: str | None = None
    reasoning: str | None = None


@dataclass(frozen=True)
class OverpassTurbo:
    query: str


@dataclass(frozen=True)
class OpenMeteo:
    params: OpenMeteoParams


@dataclass(frozen=True)
class OpenRouter:
    pass


RequestKind = Union[OverpassTurbo, OpenMeteo, OpenRouter]


def request_kind_name(kind: RequestKind) -> str:
    if isinstance(kind, OverpassTurbo):
        return "overpass"
    if isinstance(kind, OpenMeteo):
        return "openmeteo"
    return "openrouter"


class RequestStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    PROCESSED = "processed"


@dataclass
class WorkspaceData:
    """
    A named selection plus the ids of the requests issued against it.

    Every mutator bumps `last_modified`.
    """

    name: str
    selection: Selection = field(default_factory=NoSelection)
    id: str = field(default_factory=new_id)
    creation_date: int = field(default_factory=now_ts)
    last_modified: int = 0
    requests: set[str] = field(default_factory=set)
    properties: dict[tuple[str, str], RGBA] = field(default_factory=dict)
    messages: list[ChatMessage] = field(default_factory=list)
    # Ids referenced by `requests` that were not found on load.
    missing_requests: set[str] = field(default_factory=set, compare=False)

    def __post_init__(self) -> None:
        self.last_modified = max(int(self.last_modified), int(self.creation_date))

    def touch(self) -> None:
        self.last_modified = max(now_ts(), self.creation_date, self.last_modified)

    def envelope(self) -> BBox | None:
        return self.selection.envelope()

    def add_request(self, request_id: str) -> None:
        self.requests.add(request_id)
        self.touch()

    def set_name(self, name: str) -> None:
        self.name = name
        self.touch()

    def set_property_color(self, key: str, value: str, color: RGBA) -> None:
        if len(color) != 4 or any(not 0 <= int(c) <= 255 for c in color):
            raise ValueError(f"color must be 4 ints in 0..255, got {color!r}")
        self.properties[(key, value)] = tuple(int(c) for c in color)  # type: ignore[assignment]
        self.touch()

    def remove_property_color(self, key: str, value: str) -> None:
        if self.properties.pop((key, value), None) is not None:
            self.touch()

    def add_message(self, message: ChatMessage) -> None:
        self.messages.append(message)
        self.touch()


@dataclass
class WorkspaceRequest:
    """
    One request issued against a workspace.

    `processed_data` is derived from `raw_data` and never persisted.
    """

    request: RequestKind
    id: str = field(default_factory=new_id)
    layer: int = 0
    visible: bool = True
    raw_data: bytes = b""
    last_query_date: int = 0
    processed_data: FeatureStore = field(default_factory=FeatureStore, repr=False)
    status: RequestStatus = RequestStatus.QUEUED
    processed: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        if int(self.layer) < 0:
            raise ValueError("layer must be >= 0")

    @property
    def kind(self) -> str:
        return request_kind_name(self.request)

    def copy_for_run(self) -> "WorkspaceRequest":
        """Fresh, unprocessed copy carrying the same id and request."""
        return WorkspaceRequest(
            request=self.request,
            id=self.id,
            layer=self.layer,
            visible=self.visible,
        )

    def feature_count(self) -> int:
        return len(self.processed_data)
