"""
Error taxonomy for the HRMS service.

Every error carries the HTTP status it is rendered with; the app factory registers one
handler that turns any ServiceError into the `{success: false, error: ...}` envelope.
"""
from __future__ import annotations


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class Unauthorized(ServiceError):
    """No credential was presented."""

    status_code = 401


class Forbidden(ServiceError):
    """Credential invalid/expired, or role/branch not allowed."""

    status_code = 403


class ValidationError(ServiceError):
    status_code = 400


class NotFound(ServiceError):
    """Entity absent, inactive, or outside the caller's branch."""

    status_code = 404


class TransactionFailure(ServiceError):
    """A database error inside a write sequence; the transaction was rolled back."""

    status_code = 500


class DataAccessError(ServiceError):
    status_code = 500


class AuditFailure(Exception):
    """Raised by audit sinks. Never escapes record_event()."""
