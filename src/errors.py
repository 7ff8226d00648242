"""Typed failures raised by the services and translated to responses by api.py."""


class TaskManagerError(Exception):
    """Base class; ``status_code`` is the HTTP status the API layer answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TaskManagerError):
    """Malformed or missing input."""

    status_code = 400


class SelfShare(TaskManagerError):
    status_code = 400


class Unauthorized(TaskManagerError):
    """Missing, invalid or expired credential."""

    status_code = 401


class Forbidden(TaskManagerError):
    """Authenticated, but lacking the role or permission required."""

    status_code = 403


class NotFound(TaskManagerError):
    status_code = 404


class Conflict(TaskManagerError):
    """Duplicate share or duplicate account."""

    status_code = 409


class AccessInvariantError(TaskManagerError):
    """A non-owner viewer reached a task without a participation row.

    Listing and access checks only return tasks the viewer owns or
    participates in, so this indicates a bug.
    """

    status_code = 500
