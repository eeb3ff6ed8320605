"""Custom exception classes for the AgencyOS API."""

import enum

from fastapi import HTTPException, status


class AgencyOSError(Exception):
    """Base exception for AgencyOS."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuthenticationError(AgencyOSError):
    """Raised when authentication fails."""
    pass


class ResourceNotFoundError(AgencyOSError):
    """Raised when a requested resource is not found."""
    pass


class ResourceConflictError(AgencyOSError):
    """Raised when a resource already exists."""
    pass


class ValidationError(AgencyOSError):
    """Raised when input validation fails."""
    pass


class MemoryStoreError(AgencyOSError):
    """Raised when the memory gateway call fails."""
    pass


class AccessErrorKind(enum.Enum):
    """Every way the permission layer can refuse a request.

    Each member maps to an HTTP status, a short error label and a fixed,
    reviewed message. Nothing from the underlying failure is ever added.
    """

    AUTH_REQUIRED = (401, "Unauthorized", "Authentication required")
    USER_FETCH_FAILED = (500, "Internal Server Error", "Failed to load user profile")
    PERMISSION_DENIED = (403, "Forbidden", "You do not have permission to perform this action")
    OWNER_ONLY = (403, "Forbidden", "This action is restricted to the agency owner")
    PERMISSION_CHECK_FAILED = (500, "Internal Server Error", "Failed to verify permissions")

    def __init__(self, status_code: int, error: str, default_message: str):
        self.status_code = status_code
        self.error = error
        self.default_message = default_message

    @property
    def code(self) -> str:
        return self.name


class AccessError(AgencyOSError):
    """Raised by the permission dependencies; rendered as ``{error, code, message}``."""

    def __init__(self, kind: AccessErrorKind, message: str | None = None):
        self.kind = kind
        super().__init__(message or kind.default_message)

    def to_body(self) -> dict:
        return {
            "error": self.kind.error,
            "code": self.kind.code,
            "message": self.message,
        }


# HTTP exception shortcuts
def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def bad_request(detail: str = "Bad request") -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
