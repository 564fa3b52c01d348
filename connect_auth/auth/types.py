"""
Authentication types and value objects.

Plain dataclasses passed between the identity services and returned to the
HTTP layer. None of them hold a database session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class TokenPurpose(str, Enum):
    """What a single-use verification token may be redeemed for."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class Role(str, Enum):
    """Account roles carried in session claims."""

    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class SessionClaims:
    """Claims embedded in a signed session token."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    email: str
    role: str

    @property
    def account_id(self) -> UUID:
        return UUID(self.subject)


@dataclass(frozen=True)
class SessionPair:
    """Access/refresh token pair handed to the caller after login or federation."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class RegistrationData:
    """Input for direct-credential registration."""

    email: str
    password: str
    username: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class ProviderTokens:
    """Tokens returned by a provider's token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None
    scope: str | None = None


@dataclass(frozen=True)
class NormalizedProfile:
    """Provider profile reduced to the fields the identity core understands."""

    provider_user_id: str
    email: str
    display_name: str
    avatar_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FederationResult:
    """Outcome of a successful OAuth callback."""

    session: SessionPair
    account_id: UUID
    created: bool
    redirect_to: str | None = None
