# src/taskpilot/core/errors.py

from __future__ import annotations


class TaskPilotError(Exception):
    """
    Base class for failures that are reported to callers as structured results.

    `kind` is the wire name used in `{"ok": false, "errorKind": ...}` responses.
    """

    kind = "TaskPilotError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TaskPilotError):
    """Malformed or missing payload field. Fixable by the caller."""

    kind = "ValidationError"


class AuthorizationError(TaskPilotError):
    """Caller is not entitled to act on this entity. Never retried."""

    kind = "AuthorizationError"


class NotFoundError(TaskPilotError):
    kind = "NotFoundError"


class ConflictError(TaskPilotError):
    """
    A state-machine guard failed because the record moved on.

    For mutating actions this may mean "already applied": callers should re-fetch
    the task status instead of repeating the same mutation.
    """

    kind = "ConflictError"


class UpstreamError(TaskPilotError):
    """Persistence or delivery collaborator failed."""

    kind = "UpstreamError"
