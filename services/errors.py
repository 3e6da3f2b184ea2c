"""
Application Errors

Request-rejection errors raised by the service layer. Each carries the
HTTP status the blueprints answer with, so services stay free of Flask
response handling.
"""


class AppError(Exception):
    """Base error for any operation that must be rejected as a whole."""
    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        super().__init__(message)

    def to_dict(self):
        return {'success': False, 'error': self.message}


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Raised when an idempotency key is reused for a different target."""
    status_code = 409


class InvalidStateError(AppError):
    """Raised for a transition the current status does not allow."""
    status_code = 400


class ConfigurationError(AppError):
    """
    Raised when a required setting is absent or invalid.

    This covers unknown PDF/storage/provider modes and missing
    credentials for the configured mode.
    """
    status_code = 500
