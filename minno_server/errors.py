"""
Error taxonomy for the Minno server.

Every error carries a machine-readable key, a human-readable message and the
HTTP status it maps to when it reaches a route boundary.
"""

from typing import Optional


class MinnoError(Exception):
    """Base class for all application errors."""

    error = "internal_error"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(MinnoError):
    """Malformed inbound payload."""

    error = "validation_error"
    status_code = 400


class AuthError(MinnoError):
    """Slack signature missing, stale or mismatched."""

    error = "unauthorized"
    status_code = 401


class NotFoundError(MinnoError):
    """Referenced entity does not exist."""

    error = "not_found"
    status_code = 404


class ProviderError(MinnoError):
    """A downstream API (Slack, Notion) reported a failure."""

    error = "provider_error"
    status_code = 502

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.code = code

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message, "code": self.code}


class ConfigError(MinnoError):
    """Required configuration is missing. Fatal at startup."""

    error = "config_error"


class StorageError(MinnoError):
    """A database operation failed."""

    error = "storage_error"

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
