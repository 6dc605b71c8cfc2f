"""
Shared error handling for the credential issuer services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class IssuerException(Exception):
    """Base exception for credential issuer services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(IssuerException):
    """Malformed input. Caller's fault, never retried."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(IssuerException):
    """Missing record. Terminal for the caller."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class SessionNotFoundError(NotFoundError):
    """No session exists for the given id."""

    def __init__(self, session_id: Optional[str]):
        super().__init__(
            f"Could not find session item with id: {session_id}",
            {"session_id": session_id}
        )


class SessionExpiredError(IssuerException):
    """Session found but past its expiry date."""

    status_code = 403

    def __init__(self, message: str = "Session expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("SESSION_EXPIRED", message, details)


class AuthorizationCodeExpiredError(IssuerException):
    """Authorization code found but past its expiry date."""

    status_code = 403

    def __init__(self, message: str = "Authorization code expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_CODE_EXPIRED", message, details)


class ConfigurationError(IssuerException):
    """Missing or unfetchable configuration. Fatal to the invocation."""

    status_code = 500

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class PersistenceError(IssuerException):
    """Transient storage-layer failure."""

    status_code = 503

    def __init__(self, store: str, message: str = "Persistence error", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_ERROR", f"{store}: {message}", details)


class PublishError(IssuerException):
    """Transient event channel failure."""

    status_code = 503

    def __init__(self, message: str = "Publish failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PUBLISH_ERROR", message, details)
