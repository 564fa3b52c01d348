"""
Identity, session and federation services.

This module provides:
- Argon2id credential hashing and password strength checks
- HS256 session tokens (access + refresh)
- Single-use, typed verification tokens
- OAuth federation with account linking and provisioning
- Login, logout, registration, email verification and password reset flows
"""

from .background import BackgroundTaskRunner
from .jwt_service import JWTService
from .models import Account, Base, OAuthConnection, OAuthProvider, VerificationToken
from .oauth import (
    ConnectionRepository,
    OAuthClient,
    OAuthFederator,
    OAuthStateSigner,
    ProviderRegistry,
    RedirectPolicy,
)
from .repositories import AccountRepository
from .scheduler import TokenCleanupScheduler
from .services import (
    PASSWORD_RESET_ACKNOWLEDGEMENT,
    AuthenticationService,
    LoggingTokenDelivery,
    PasswordService,
    RegistrationService,
    TokenDelivery,
    VerificationTokenManager,
)
from .types import (
    FederationResult,
    NormalizedProfile,
    ProviderTokens,
    RegistrationData,
    Role,
    SessionClaims,
    SessionPair,
    TokenPurpose,
)

__all__ = [
    # Models
    "Account",
    "Base",
    "OAuthConnection",
    "OAuthProvider",
    "VerificationToken",
    # Services
    "AccountRepository",
    "AuthenticationService",
    "BackgroundTaskRunner",
    "ConnectionRepository",
    "JWTService",
    "LoggingTokenDelivery",
    "OAuthClient",
    "OAuthFederator",
    "OAuthStateSigner",
    "PasswordService",
    "ProviderRegistry",
    "RedirectPolicy",
    "RegistrationService",
    "TokenCleanupScheduler",
    "TokenDelivery",
    "VerificationTokenManager",
    # Types
    "PASSWORD_RESET_ACKNOWLEDGEMENT",
    "FederationResult",
    "NormalizedProfile",
    "ProviderTokens",
    "RegistrationData",
    "Role",
    "SessionClaims",
    "SessionPair",
    "TokenPurpose",
]
