"""Domain error types raised by services and the auth layer.

Services raise these instead of `HTTPException` so they stay usable from
scripts and tests; `main` registers a handler that maps each `ErrorKind`
to an HTTP status code and a stable JSON body.
"""

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    INTERNAL = "INTERNAL"


STATUS_BY_KIND = {
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.MAX_ATTEMPTS_EXCEEDED: 409,
    ErrorKind.INTERNAL: 500,
}


class ExamPlatformError(Exception):
    """Base class for errors that carry an `ErrorKind`."""
    kind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "message": self.message}


class AuthenticationError(ExamPlatformError):
    """No session, or the presented token is invalid/expired."""
    kind = ErrorKind.AUTHENTICATION


class AuthorizationError(ExamPlatformError):
    """Valid session but the role or ownership does not allow the action."""
    kind = ErrorKind.AUTHORIZATION


class NotFoundError(ExamPlatformError):
    kind = ErrorKind.NOT_FOUND


class ValidationError(ExamPlatformError):
    """Malformed input; `errors` holds `{field, message}` entries."""
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls("Validation failed", [{"field": field, "message": message}])

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class ConflictError(ExamPlatformError):
    kind = ErrorKind.CONFLICT


class MaxAttemptsExceededError(ExamPlatformError):
    kind = ErrorKind.MAX_ATTEMPTS_EXCEEDED


class InternalError(ExamPlatformError):
    kind = ErrorKind.INTERNAL
