"""Error taxonomy returned by the resource lifecycle operations."""

from __future__ import annotations

from typing import Optional


class ResourceError(Exception):
    """Base class: carries a stable code and the HTTP status routers should use."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "field": self.field}


class ValidationError(ResourceError):
    """Malformed, missing or forbidden field. Never retried."""

    code = "invalid_input"
    status_code = 422


class OwnerNotAuthenticatedError(ResourceError):
    code = "unauthenticated"
    status_code = 401


class NotFoundError(ResourceError):
    code = "not_found"
    status_code = 404


class CannotDeleteDefaultError(ResourceError):
    """The record holds the default flag; move it with set_default first."""

    code = "cannot_delete_default"
    status_code = 409


class ConflictError(ResourceError):
    """Concurrent modification kept winning after the bounded retries."""

    code = "conflict"
    status_code = 409


class UnavailableError(ResourceError):
    """The store kept failing after the bounded retries."""

    code = "unavailable"
    status_code = 503
