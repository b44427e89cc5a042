"""Custom exceptions and helpers for consistent error responses."""

import json
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for application errors."""

    # Messages of errors that must not leak details are replaced on render.
    public_message: Optional[str] = None

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class ValidationFailedError(AppError):
    """Raised when input shape, size or type is wrong (user-correctable)."""

    def __init__(self, message: str = "Invalid input", reason: str = "validation_failed"):
        super().__init__(message, status_code=422)
        self.reason = reason


class AuthorizationDeniedError(AppError):
    """Raised when a policy denies the caller."""

    public_message = "Access denied"

    def __init__(self, policy: str, message: str = "Access denied"):
        super().__init__(message, status_code=403)
        self.policy = policy


class NotFoundError(AppError):
    """Raised when a requested resource is missing."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class ConflictError(AppError):
    """Raised on duplicate keys, stale writes or exhausted name generation."""

    def __init__(self, message: str = "Conflict"):
        super().__init__(message, status_code=409)


class StorageFailureError(AppError):
    """Raised when attachment bytes cannot be read or written."""

    public_message = "Storage error"

    def __init__(self, message: str = "Storage error"):
        super().__init__(message, status_code=500)


class AlreadyProcessedError(AppError):
    """Raised when an email is retried after it already produced a ticket."""

    def __init__(self, message: str = "Email has already been processed successfully."):
        super().__init__(message, status_code=409)


def to_response(error: AppError) -> Dict[str, Any]:
    """Convert an AppError into a Lambda proxy integration response."""
    body: Dict[str, Any] = {
        "message": error.public_message or str(error),
        "error": type(error).__name__,
        "status": "error",
    }
    if isinstance(error, AuthorizationDeniedError):
        body["policy"] = error.policy
    return {
        "statusCode": error.status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
