"""Domain error taxonomy mapped to HTTP responses at the API edge."""

from __future__ import annotations

from typing import Any, Dict, Optional


class WoozyError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(WoozyError):
    """Missing or invalid input, rejected before any mutation."""

    status_code = 422
    error_code = "validation_error"


class Forbidden(WoozyError):
    status_code = 403
    error_code = "forbidden"


class NotFound(WoozyError):
    status_code = 404
    error_code = "not_found"


class ConflictError(WoozyError):
    """The record moved on since the caller read it."""

    status_code = 409
    error_code = "conflict"


class UpstreamError(WoozyError):
    """A remote provider failed, timed out, or reported an application-level error."""

    status_code = 502
    error_code = "upstream_error"


class ConfigurationError(WoozyError):
    """Locally detectable setup problem, such as a workspace without a publishing credential."""

    status_code = 400
    error_code = "configuration_error"


class RateLimited(WoozyError):
    status_code = 429
    error_code = "rate_limited"

    def __init__(self, message: str, *, limit: int, remaining: int, reset_seconds: int) -> None:
        super().__init__(
            message,
            details={"limit": limit, "remaining": remaining, "reset_seconds": reset_seconds},
        )
        self.limit = limit
        self.remaining = remaining
        self.reset_seconds = reset_seconds


def error_payload(exc: WoozyError, *, request_id: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error_code": exc.error_code,
        "message": exc.message,
        "request_id": request_id,
    }
    if exc.details:
        payload["details"] = exc.details
    return payload
