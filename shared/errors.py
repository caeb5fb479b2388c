"""
Shared error handling for the User Console data layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error payload handed to the view layer."""

    code: str
    message: str
    status: Optional[int] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ConsoleError(Exception):
    """Base exception for the console data layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        self.status = status
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            status=self.status,
            details=self.details
        )


class ValidationError(ConsoleError):
    """Input rejected before reaching the remote API."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(ConsoleError):
    """The remote API rejected the session (401)."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details, status=401)


class ExternalServiceError(ConsoleError):
    """Transport failure or non-success response from the remote API."""

    def __init__(self, service: str, message: str = "External service error",
                 details: Optional[Dict[str, Any]] = None, status: Optional[int] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details, status=status)


class ConflictError(ConsoleError):
    """Business-rule conflict reported by the remote API (409)."""

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None,
                 code: str = "CONFLICT"):
        super().__init__(code, message, details, status=409)


class HasSpecialPermissionsError(ConflictError):
    """PIN change needs explicit confirmation because overrides would be removed."""

    def __init__(self, message: str = "User has special permissions assigned",
                 overrides_count: int = 0, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("overrides_count", overrides_count)
        details.setdefault("require_confirm_remove_overrides", True)
        super().__init__(message, details, code="HAS_SPECIAL_PERMISSIONS")
        self.overrides_count = overrides_count
