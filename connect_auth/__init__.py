"""
connect-auth: identity, session and federation core.

Mints and verifies session tokens, manages single-use verification tokens
and federates sign-in through OAuth providers.
"""

from .config import AppConfig, AuthConfig, OAuthConfig, OAuthProviderSettings
from .container import IdentityContainer

__all__ = [
    "AppConfig",
    "AuthConfig",
    "IdentityContainer",
    "OAuthConfig",
    "OAuthProviderSettings",
]

__version__ = "1.0.0"
