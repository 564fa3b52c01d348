"""
JWT session token service.

This module mints, verifies and refreshes the stateless HS256 session
tokens handed out after login or federation. Access and refresh tokens
carry the same claims (sub, iat, exp, email, role) and differ only in
lifetime. Revocation is not supported; a token stays valid until it expires.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from ..config import AuthConfig
from ..exceptions import ConfigurationException, InvalidTokenException, TokenExpiredException
from .types import SessionClaims, SessionPair

logger = logging.getLogger(__name__)


class JWTService:
    """
    JWT token service for creating and validating session tokens.

    Supports:
    - Access tokens (1 hour default)
    - Refresh tokens (7 days default)
    - Refreshing an access token from a refresh token (no rotation)
    """

    algorithm = "HS256"

    def __init__(
        self,
        secret: str,
        access_token_ttl: int = 3600,
        refresh_token_ttl: int = 604800,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize JWT service.

        Args:
            secret: Symmetric signing secret
            access_token_ttl: Access token lifetime in seconds
            refresh_token_ttl: Refresh token lifetime in seconds
            clock: Returns the current aware UTC time; injectable for tests
        """
        if not secret:
            raise ConfigurationException("JWT secret must not be empty", setting="JWT_SECRET")
        self._secret = secret
        self.access_token_expire = timedelta(seconds=access_token_ttl)
        self.refresh_token_expire = timedelta(seconds=refresh_token_ttl)
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_config(cls, config: AuthConfig) -> "JWTService":
        return cls(
            secret=config.jwt_secret,
            access_token_ttl=config.access_token_ttl,
            refresh_token_ttl=config.refresh_token_ttl,
        )

    def _encode(self, subject: str, email: str, role: str, lifetime: timedelta) -> str:
        now = self._clock()
        payload = {
            "sub": subject,
            "iat": now,
            "exp": now + lifetime,
            "email": email,
            "role": role,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def create_access_token(self, account_id: UUID | str, email: str, role: str) -> str:
        """Create a signed access token."""
        return self._encode(str(account_id), email, role, self.access_token_expire)

    def create_refresh_token(self, account_id: UUID | str, email: str, role: str) -> str:
        """Create a signed refresh token with the same claims and a longer lifetime."""
        return self._encode(str(account_id), email, role, self.refresh_token_expire)

    def mint(self, account: Any) -> SessionPair:
        """
        Mint an access/refresh pair for an account.

        Args:
            account: Any object exposing ``id``, ``email`` and ``role``

        Returns:
            SessionPair with both tokens and the access lifetime in seconds
        """
        access_token = self.create_access_token(account.id, account.email, account.role)
        refresh_token = self.create_refresh_token(account.id, account.email, account.role)
        logger.info(f"Minted session tokens for account {account.id}")
        return SessionPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_token_expire.total_seconds()),
        )

    def verify(self, token: str) -> SessionClaims:
        """
        Verify a session token and return its claims.

        Raises:
            TokenExpiredException: If the signature is valid but the token expired
            InvalidTokenException: For any signature, format or claim failure
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected session token: {type(e).__name__}")
            raise InvalidTokenException()

        email = payload.get("email")
        role = payload.get("role")
        if not isinstance(email, str) or not isinstance(role, str):
            raise InvalidTokenException()

        return SessionClaims(
            subject=str(payload["sub"]),
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            email=email,
            role=role,
        )

    def refresh(self, refresh_token: str) -> str:
        """
        Issue a new access token from a refresh token.

        The refresh token itself is neither rotated nor invalidated.
        """
        claims = self.verify(refresh_token)
        logger.info(f"Refreshed access token for account {claims.subject}")
        return self.create_access_token(claims.subject, claims.email, claims.role)

    def subject_of(self, token: str) -> UUID:
        """Extract the account id, failing exactly like verify()."""
        claims = self.verify(token)
        try:
            return UUID(claims.subject)
        except ValueError:
            raise InvalidTokenException()
