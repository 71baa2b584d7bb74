"""Exception types raised by the Reelshelf services."""

from __future__ import annotations


class ReelshelfError(Exception):
    """Base error carrying the HTTP status it should be reported with."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ReelshelfError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(ReelshelfError):
    status_code = 409
    default_message = "Resource already exists"


class ConcurrentModificationError(ConflictError):
    """Raised when a collection was changed by another writer mid-update."""

    default_message = "Collection was modified concurrently, please retry"


class UnauthorizedError(ReelshelfError):
    status_code = 401
    default_message = "Unauthorized"


class UpstreamError(ReelshelfError):
    """The movie catalog provider failed or answered with an error status."""

    status_code = 502
    default_message = "Movie catalog request failed"

    def __init__(self, message: str | None = None, *, upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    status_code = 504
    default_message = "Movie catalog request timed out"


class EmptyResultError(ReelshelfError):
    status_code = 400
    default_message = "No results found"
