"""Domain errors raised by the workflow modules.

Each error carries the HTTP status the API layer answers with; `main.py`
renders them as ``{"message": ..., "error": ...}``.
"""


class GrievanceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GrievanceError):
    status_code = 400


class AuthenticationError(GrievanceError):
    status_code = 401


class InvalidSessionError(AuthenticationError):
    """A credential was supplied but is malformed, tampered with or expired."""
    status_code = 403


class AuthorizationError(GrievanceError):
    status_code = 403


class NotFoundError(GrievanceError):
    status_code = 404


class ConflictError(GrievanceError):
    """Retryable: the row changed underneath the caller."""
    status_code = 409


class DeliveryError(GrievanceError):
    status_code = 502


class ExternalServiceDegraded(GrievanceError):
    """Raised inside gateways only; callers catch it and fall back."""
    status_code = 503


__all__ = [
    "GrievanceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidSessionError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "DeliveryError",
    "ExternalServiceDegraded",
]
