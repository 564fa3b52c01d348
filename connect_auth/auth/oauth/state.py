"""
Anti-forgery state and post-login redirect handling for OAuth.

The ``state`` value is a short-lived HS256 token bound to one provider and
carrying the optional redirect target, so the target cannot be swapped in
transit. Redirect targets are also checked against an allow-list when the
flow starts and again when it completes.
"""

import logging
import secrets
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

import jwt

from ...exceptions import AuthenticationException, ValidationException

logger = logging.getLogger(__name__)


def _origin(url: str) -> str | None:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower()


class RedirectPolicy:
    """Allow-list for post-federation redirect targets."""

    def __init__(self, frontend_url: str, additional_origins: Iterable[str] = ()) -> None:
        self.frontend_url = frontend_url.rstrip("/")
        origins = [frontend_url, *additional_origins]
        self.allowed_origins = {o for o in (_origin(url) for url in origins) if o}

    def validate(self, target: str | None) -> str | None:
        """
        Return the target unchanged if it may be honored.

        Accepts site-relative paths ("/dashboard") and absolute http(s) URLs on
        an allowed origin.

        Raises:
            ValidationException: For any other target
        """
        if target is None or target == "":
            return None
        if target.startswith("/") and not target.startswith("//") and "\\" not in target:
            return target
        origin = _origin(target)
        if origin is not None and origin in self.allowed_origins:
            return target
        logger.warning(f"Rejected redirect target outside allow-list: {target[:200]}")
        raise ValidationException("Redirect target is not allowed")

    def resolve(self, target: str | None) -> str | None:
        """Validate and turn relative targets into frontend URLs."""
        allowed = self.validate(target)
        if allowed is None:
            return None
        if allowed.startswith("/"):
            return f"{self.frontend_url}{allowed}"
        return allowed


class OAuthStateSigner:
    """Signs and verifies OAuth ``state`` values."""

    algorithm = "HS256"
    audience = "connect-auth:oauth-state"

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._secret = secret
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or (lambda: datetime.now(UTC))

    def sign(self, provider_key: str, redirect_to: str | None = None) -> str:
        now = self._clock()
        payload = {
            "nonce": secrets.token_urlsafe(16),
            "prv": provider_key,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.ttl,
        }
        if redirect_to:
            payload["rdr"] = redirect_to
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, state: str, provider_key: str) -> str | None:
        """
        Check a returned state value.

        Returns:
            The bound redirect target, if any

        Raises:
            AuthenticationException: If the state is forged, expired or was
                issued for another provider
        """
        try:
            payload = jwt.decode(
                state,
                self._secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"require": ["exp", "nonce", "prv"]},
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected OAuth state for {provider_key}: {type(e).__name__}")
            raise AuthenticationException("Invalid OAuth state", reason="invalid_state")

        if payload["prv"] != provider_key:
            logger.warning(f"OAuth state issued for {payload['prv']} presented to {provider_key}")
            raise AuthenticationException("Invalid OAuth state", reason="invalid_state")

        return payload.get("rdr")
