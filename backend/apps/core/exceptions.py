"""
Domain exceptions shared by all service modules.

Services raise these; the API layer renders them into the response
envelope with error_code equal to the HTTP status.
"""


class ServiceError(Exception):
    """Base exception for service-layer failures."""

    status_code: int = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Malformed input or a domain conflict. Terminal; do not retry."""

    status_code = 400


class AuthenticationError(ServiceError):
    """Missing or invalid credentials."""

    status_code = 401


class AccessDeniedError(ServiceError):
    """Caller is not a member of the organization or lacks the required role."""

    status_code = 403


class NotFoundError(ServiceError):
    """Unknown id, slug, number or token."""

    status_code = 404


class ConflictError(ServiceError):
    """Concurrent write collision. Safe to retry."""

    status_code = 409
