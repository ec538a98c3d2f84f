"""Domain exceptions.

Validation-type errors are raised synchronously to callers. Connector and
catalog errors are raised by collaborators and captured by the orchestrator;
they never escape background processing.
"""

from __future__ import annotations


class SubjectRightsError(Exception):
    """Base exception for all data subject request failures."""


class RequestValidationError(SubjectRightsError, ValueError):
    """Submission payload or options are invalid."""


class RequestNotFoundError(SubjectRightsError):
    """No request with the given id (and kind) exists."""

    def __init__(self, request_id: int, kind: str | None = None) -> None:
        self.request_id = request_id
        label = f"{kind.capitalize()} request" if kind else "Request"
        if kind == "delete":
            label = "Deletion request"
        super().__init__(f"{label} {request_id} not found")


class InvalidRequestStateError(SubjectRightsError):
    """The request's current status does not allow the operation."""

    def __init__(self, action: str, status: str) -> None:
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} request with status: {status}")


class CatalogError(SubjectRightsError):
    """The metadata catalog could not be read."""


class WarehouseError(SubjectRightsError):
    """The warehouse connector failed to serve a subject-data call."""
