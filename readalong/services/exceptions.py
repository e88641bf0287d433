"""
Domain exceptions for the reading-group subsystem.

Each exception carries the HTTP status it maps to. Routers let them
propagate to the handler registered in main.py; the WebSocket router
turns them into `error` / `auth-error` events instead.
"""

from fastapi import status


class ReadingGroupError(Exception):
    """Base exception for all reading-group service errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Reading group operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthorizedError(ReadingGroupError):
    """Raised when a credential is missing or invalid."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class TokenExpiredError(UnauthorizedError):
    """Raised when a credential was valid but has expired."""

    default_message = "Token expired"


class NotFoundError(ReadingGroupError):
    """Raised when a group, user, book or member does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ForbiddenError(ReadingGroupError):
    """Raised when the caller lacks the required membership or role."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have access to this group"


class ConflictError(ReadingGroupError):
    """Raised when a user tries to join a group they're already in."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class ConcurrentModificationError(ConflictError):
    """Raised when a group kept changing underneath a command."""

    default_message = "The group was modified concurrently, please retry"


class InvalidArgumentError(ReadingGroupError):
    """Raised on malformed input, e.g. a negative page number."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid argument"


class InvalidStateError(ReadingGroupError):
    """Raised when an operation would break a group invariant."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current group state"
