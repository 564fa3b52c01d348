"""
Exception hierarchy for the connect-auth identity core.

Every exception carries a human readable message plus a ``details`` dict so
that the surrounding API layer can map failures to transport status codes
without parsing messages.
"""

from typing import Any


class AuthServiceException(Exception):
    """Base exception for all identity, session and federation errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Authentication Exceptions
# ============================================================================


class AuthenticationException(AuthServiceException):
    """Raised when a credential, token or federated login is rejected."""

    def __init__(
        self,
        message: str = "Invalid credentials",
        reason: str = "invalid_credentials",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"reason": reason, **(details or {})})
        self.reason = reason


class TokenExpiredException(AuthenticationException):
    """Raised when a session token is well-formed but past its expiry."""

    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message, reason="expired")


class InvalidTokenException(AuthenticationException):
    """Raised when a session token fails signature, format or claim checks."""

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message, reason="invalid")


class CodeExchangeException(AuthenticationException):
    """Raised when an OAuth authorization code cannot be exchanged."""

    def __init__(self, provider: str, error: str | None = None) -> None:
        message = f"Failed to exchange authorization code with {provider}"
        super().__init__(
            message, reason="exchange_failed", details={"provider": provider, "error": error}
        )
        self.provider = provider
        self.error = error


class InvalidVerificationTokenException(AuthenticationException):
    """
    Raised when a single-use token cannot be redeemed.

    Unknown, already redeemed and expired tokens all raise this same
    exception with the same message.
    """

    def __init__(self) -> None:
        super().__init__("Invalid or expired token", reason="invalid_verification_token")


# ============================================================================
# Input and Lookup Exceptions
# ============================================================================


class ValidationException(AuthServiceException):
    """Raised when caller supplied input is malformed."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message, {"errors": errors or [message]})
        self.errors = errors or [message]


class NotFoundException(AuthServiceException):
    """Raised when an account or provider does not exist."""

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(
            f"{resource} not found: {identifier}",
            {"resource": resource, "identifier": str(identifier)},
        )
        self.resource = resource
        self.identifier = identifier


class ConfigurationException(AuthServiceException):
    """Raised when required configuration is missing or unusable."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message, {"setting": setting})
        self.setting = setting


# ============================================================================
# Persistence Exceptions
# ============================================================================


class DatabaseException(AuthServiceException):
    """Raised when a persistence operation fails. The driver error is kept as __cause__."""

    summary = "Database operation failed"

    def __init__(self, operation: str, error: str | None = None) -> None:
        super().__init__(f"{self.summary}: {operation}", {"operation": operation, "error": error})
        self.operation = operation


class DuplicateRecordException(DatabaseException):
    """Raised when a write violates a uniqueness constraint."""

    summary = "Duplicate record"


# ============================================================================
# Bug / Upstream Anomaly Exceptions
# ============================================================================


class InternalException(AuthServiceException):
    """Raised for failures that indicate a bug in this service (e.g. a corrupt hash)."""

    pass


class UnexpectedException(AuthServiceException):
    """Raised when an upstream provider returns something this service cannot use."""

    pass
