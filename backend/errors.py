from __future__ import annotations


class WorkspaceCoreError(Exception):
    """Base class for errors raised by the workspace core."""


class TransportError(WorkspaceCoreError):
    def __init__(self, message: str, *, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class RateLimitExceeded(TransportError):
    """Raised once the 429 retry budget is spent."""


class ParseError(WorkspaceCoreError):
    pass


class QueryValidationError(WorkspaceCoreError):
    pass


class PersistenceError(WorkspaceCoreError):
    pass


class NoActiveWorkspaceError(WorkspaceCoreError):
    pass


class UnknownWorkspaceError(WorkspaceCoreError):
    pass


class QueueFullError(WorkspaceCoreError):
    pass
