"""Custom exception classes for the engine."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class ForbiddenError(AppError):
    """Raised when the acting user may not perform the operation."""

    def __init__(self, message="Forbidden."):
        """Initialize the error."""
        super().__init__(message, 403)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class ConflictError(AppError):
    """Raised when the operation conflicts with the current match state."""

    def __init__(self, message="Conflict."):
        """Initialize the error."""
        super().__init__(message, 409)


_ERRORS_BY_STATUS: dict[int, type[AppError]] = {
    400: ValidationError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
}


def raise_for_outcome(outcome: Mapping[str, Any]) -> Mapping[str, Any]:
    """Raise the matching AppError for a failed engine outcome."""
    if outcome.get("ok", True):
        return outcome
    message = outcome.get("error") or "Request failed."
    status = outcome.get("status") or 400
    error_cls = _ERRORS_BY_STATUS.get(status)
    if error_cls is None:
        raise AppError(message, status)
    raise error_cls(message)
