"""
Service-layer exceptions.

Services raise these instead of bare ``ValueError`` so the application
factory can map each one to an HTTP status in a single error handler.
They still subclass ``ValueError`` so callers that only care about
"bad input" can keep catching that.
"""


class ServiceError(ValueError):
    """Base class for errors that block the primary operation."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Malformed identifier, missing field, or a field that may not be set."""

    status_code = 400


class AuthorizationError(ServiceError):
    """The caller is authenticated but not allowed to do this."""

    status_code = 403


class NotFoundError(ServiceError):
    """The allocation, asset, purchase request, or user does not exist."""

    status_code = 404


class InvalidStateError(ServiceError):
    """The record is not in a state that allows the requested transition."""

    status_code = 409
