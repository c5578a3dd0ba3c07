# Overview: Typed workflow failures shared by the engine and the HTTP layer.

"""
Every failure the engine reports carries a machine-readable ``kind`` and a
human-readable ``reason``. Callers map kinds to transport status codes; the
engine never does.

All of these are raised before anything is committed. Unexpected lower-layer
errors (database outages, programming errors) are NOT wrapped here: they
propagate to the caller, which logs them and answers with a generic internal
failure.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for expected workflow failures."""

    kind = "workflow_error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.reason}


class Unauthenticated(WorkflowError):
    """No identity context was supplied."""

    kind = "unauthenticated"


class Forbidden(WorkflowError):
    """The actor's role or ownership fails the permission check."""

    kind = "forbidden"


class NotFound(WorkflowError):
    """An entity id could not be resolved."""

    kind = "not_found"


class InvalidTransition(WorkflowError):
    """No matching edge exists in the relevant state graph."""

    kind = "invalid_transition"


class ValidationFailed(WorkflowError):
    """Structural input defect (empty item set, short comment, bad quantities...)."""

    kind = "validation_failed"


class Conflict(WorkflowError):
    """The stored state changed between read and write, or the entity is locked."""

    kind = "conflict"


# Transport mapping; the engine itself never looks at these
HTTP_STATUS_BY_KIND = {
    Unauthenticated.kind: 401,
    Forbidden.kind: 403,
    NotFound.kind: 404,
    InvalidTransition.kind: 400,
    ValidationFailed.kind: 400,
    Conflict.kind: 409,
}


def http_status_for(error: WorkflowError) -> int:
    return HTTP_STATUS_BY_KIND.get(error.kind, 400)
