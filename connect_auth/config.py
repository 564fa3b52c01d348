"""
Configuration Management - Loads identity core settings from the environment
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .exceptions import ConfigurationException

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationException(f"{name} must be an integer, got {raw!r}", setting=name)


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _list_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class AuthConfig:
    """Session and verification token settings"""

    jwt_secret: str
    access_token_ttl: int = 3600
    refresh_token_ttl: int = 604800
    email_verification_ttl: int = 86400
    password_reset_ttl: int = 3600
    require_verified_email: bool = False

    def __post_init__(self) -> None:
        if not self.jwt_secret:
            raise ConfigurationException("JWT secret must not be empty", setting="JWT_SECRET")
        if self.access_token_ttl <= 0 or self.refresh_token_ttl <= 0:
            raise ConfigurationException("Token lifetimes must be positive", setting="JWT_EXPIRATION")

    @classmethod
    def from_env(cls) -> "AuthConfig":
        """Load auth config from environment variables"""
        secret = os.getenv("JWT_SECRET")
        if not secret:
            logger.error("JWT_SECRET is not set")
            raise ConfigurationException("JWT_SECRET must be set", setting="JWT_SECRET")

        return cls(
            jwt_secret=secret,
            access_token_ttl=_int_env("JWT_EXPIRATION", 3600),
            refresh_token_ttl=_int_env("REFRESH_TOKEN_EXPIRATION", 604800),
            email_verification_ttl=_int_env("EMAIL_VERIFICATION_TTL", 86400),
            password_reset_ttl=_int_env("PASSWORD_RESET_TTL", 3600),
            require_verified_email=_bool_env("REQUIRE_VERIFIED_EMAIL", False),
        )


@dataclass
class OAuthProviderSettings:
    """Deployment settings for one OAuth provider, used to seed the provider table"""

    provider_key: str
    display_name: str
    client_id: str | None
    client_secret: str | None
    auth_url: str
    token_url: str
    user_info_url: str
    redirect_url: str
    scope: str
    icon_url: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


_PROVIDER_DEFAULTS: dict[str, dict[str, str]] = {
    "google": {
        "display_name": "Google",
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "user_info_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "email profile",
        "icon_url": "https://www.google.com/favicon.ico",
    },
    "github": {
        "display_name": "GitHub",
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "user_info_url": "https://api.github.com/user",
        "scope": "read:user user:email",
        "icon_url": "https://github.com/favicon.ico",
    },
}


@dataclass
class OAuthConfig:
    """OAuth federation settings"""

    api_base_url: str = "http://localhost:8080"
    frontend_url: str = "http://localhost:3000"
    additional_redirect_origins: list[str] = field(default_factory=list)
    http_timeout: float = 20.0
    state_ttl: int = 600
    require_state: bool = True
    providers: dict[str, OAuthProviderSettings] = field(default_factory=dict)

    @staticmethod
    def provider_from_env(provider_key: str, api_base_url: str) -> OAuthProviderSettings:
        """Build settings for a built-in provider, applying OAUTH_<KEY>_* overrides"""
        defaults = _PROVIDER_DEFAULTS[provider_key]
        prefix = f"OAUTH_{provider_key.upper()}_"
        return OAuthProviderSettings(
            provider_key=provider_key,
            display_name=defaults["display_name"],
            client_id=os.getenv(f"{prefix}CLIENT_ID"),
            client_secret=os.getenv(f"{prefix}CLIENT_SECRET"),
            auth_url=os.getenv(f"{prefix}AUTH_URL", defaults["auth_url"]),
            token_url=os.getenv(f"{prefix}TOKEN_URL", defaults["token_url"]),
            user_info_url=os.getenv(f"{prefix}USER_INFO_URL", defaults["user_info_url"]),
            redirect_url=os.getenv(
                f"{prefix}REDIRECT_URL",
                f"{api_base_url.rstrip('/')}/api/auth/oauth/{provider_key}/callback",
            ),
            scope=os.getenv(f"{prefix}SCOPE", defaults["scope"]),
            icon_url=defaults["icon_url"],
        )

    @classmethod
    def from_env(cls) -> "OAuthConfig":
        """Load OAuth config from environment variables"""
        api_base_url = os.getenv("API_BASE_URL", "http://localhost:8080")
        timeout_raw = os.getenv("OAUTH_HTTP_TIMEOUT", "20")
        try:
            http_timeout = float(timeout_raw)
        except ValueError:
            raise ConfigurationException(
                f"OAUTH_HTTP_TIMEOUT must be a number, got {timeout_raw!r}",
                setting="OAUTH_HTTP_TIMEOUT",
            )

        return cls(
            api_base_url=api_base_url,
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            additional_redirect_origins=_list_env("ADDITIONAL_REDIRECT_ORIGINS"),
            http_timeout=http_timeout,
            state_ttl=_int_env("OAUTH_STATE_TTL", 600),
            require_state=_bool_env("OAUTH_REQUIRE_STATE", True),
            providers={
                key: cls.provider_from_env(key, api_base_url) for key in _PROVIDER_DEFAULTS
            },
        )


@dataclass
class AppConfig:
    """Top-level configuration for the identity core"""

    auth: AuthConfig
    oauth: OAuthConfig = field(default_factory=OAuthConfig)
    database_url: str = "sqlite:///./connect_auth.db"
    background_max_concurrency: int = 8
    token_cleanup_interval: int = 3600

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load the full configuration from environment variables"""
        config = cls(
            auth=AuthConfig.from_env(),
            oauth=OAuthConfig.from_env(),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./connect_auth.db"),
            background_max_concurrency=_int_env("BACKGROUND_MAX_CONCURRENCY", 8),
            token_cleanup_interval=_int_env("TOKEN_CLEANUP_INTERVAL", 3600),
        )
        logger.info(
            f"Loaded configuration: access_ttl={config.auth.access_token_ttl}s, "
            f"refresh_ttl={config.auth.refresh_token_ttl}s, "
            f"oauth providers configured="
            f"{[k for k, p in config.oauth.providers.items() if p.is_configured]}"
        )
        return config
