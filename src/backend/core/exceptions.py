"""
Domain errors for the poll resolution service.

Every error carries a short user-facing message and the HTTP status the API
layer maps it to. Nothing here exposes internal details to callers.
"""


class SwarmBetError(Exception):
    """Base exception for SwarmBet operations."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str = "Unable to process request"):
        super().__init__(message)
        self.message = message


class Unauthorized(SwarmBetError):
    """Missing or invalid caller identity."""

    status_code = 401
    error_type = "unauthorized"


class ValidationError(SwarmBetError):
    """Malformed identifiers, confidence values or dates."""

    status_code = 400
    error_type = "validation_error"


class NotFound(SwarmBetError):
    """Poll, user or option does not exist."""

    status_code = 404
    error_type = "not_found"


class NotActive(SwarmBetError):
    """Poll is outside its voting window or not in active status."""

    status_code = 400
    error_type = "not_active"


class Conflict(SwarmBetError):
    """Duplicate vote or a state transition that is not allowed."""

    status_code = 409
    error_type = "conflict"


class AdapterUnavailable(SwarmBetError):
    """An external collaborator (tally network, market oracle) failed."""

    status_code = 503
    error_type = "adapter_unavailable"


class StorageError(SwarmBetError):
    """Datastore failure."""

    status_code = 500
    error_type = "storage_error"
