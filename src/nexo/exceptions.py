"""Custom exceptions for the Nexo price service.

Every user-visible failure maps to one of these. The API layer turns them
into an HTTP status plus a machine-readable error code; see nexo.api.errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nexo.models import RateLimitResult


class NexoError(Exception):
    """Base exception for all service errors."""

    status_code = 500
    error_code = "internal_error"


class ClientError(NexoError):
    """Raised for an invalid or unsupported request parameter."""

    status_code = 400
    error_code = "bad_request"


class NotFoundError(ClientError):
    """Raised when no data exists for the requested symbol or pair."""

    status_code = 404
    error_code = "not_found"


class UnauthorizedError(NexoError):
    """Raised when a protected endpoint is called without the shared secret."""

    status_code = 401
    error_code = "unauthorized"


class UpstreamUnavailableError(NexoError):
    """Raised when every adapter of a fallback chain failed."""

    status_code = 502
    error_code = "upstream_unavailable"


class RateLimitedError(NexoError):
    """Raised when a client exceeded its request window."""

    status_code = 429
    error_code = "too_many_requests"

    def __init__(self, result: RateLimitResult) -> None:
        super().__init__("Rate limit exceeded")
        self.result = result


class PersistenceError(NexoError):
    """Raised when the row store fails (transport or database error)."""

    status_code = 502
    error_code = "upstream_error"


class RowNotFoundError(PersistenceError):
    """Raised when a row looked up by primary key does not exist."""

    status_code = 404
    error_code = "not_found"
