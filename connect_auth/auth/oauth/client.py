"""
HTTP client for provider token and profile endpoints.

One call exchanges the authorization code, a second fetches the profile;
the two never run in parallel. The httpx client factory is injectable so
tests can route both calls through a mock transport.
"""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from ...exceptions import CodeExchangeException, UnexpectedException
from ..models import OAuthProvider
from ..types import ProviderTokens

logger = logging.getLogger(__name__)

USER_AGENT = "connect-auth"


class OAuthClient:
    """Talks to a provider's token and profile endpoints."""

    def __init__(
        self,
        timeout: float = 20.0,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.timeout = timeout
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=self.timeout))

    async def exchange_code(self, provider: OAuthProvider, code: str) -> ProviderTokens:
        """
        Trade an authorization code for provider tokens.

        Raises:
            CodeExchangeException: On transport errors, non-2xx responses,
                provider error bodies or a missing access_token
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": provider.redirect_url,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
        }
        key = provider.provider_key
        try:
            async with self._client_factory() as client:
                response = await client.post(
                    provider.token_url,
                    data=data,
                    headers={"Accept": "application/json", "User-Agent": USER_AGENT},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Code exchange with {key} failed: {type(e).__name__}")
            raise CodeExchangeException(key, type(e).__name__) from e
        except ValueError as e:
            logger.warning(f"Code exchange with {key} returned a non-JSON body")
            raise CodeExchangeException(key, "invalid_response") from e

        if not isinstance(payload, dict):
            raise CodeExchangeException(key, "invalid_response")
        if payload.get("error"):
            logger.warning(f"Code exchange with {key} rejected: {payload.get('error')}")
            raise CodeExchangeException(key, str(payload.get("error")))

        access_token = payload.get("access_token")
        if not access_token:
            raise CodeExchangeException(key, "missing_access_token")

        return ProviderTokens(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=_as_int(payload.get("expires_in")),
            token_type=payload.get("token_type"),
            scope=payload.get("scope"),
        )

    async def fetch_profile(self, provider: OAuthProvider, access_token: str) -> dict[str, Any]:
        """
        Fetch the account profile with the provider access token.

        Raises:
            UnexpectedException: If the profile cannot be retrieved or parsed
        """
        key = provider.provider_key
        try:
            async with self._client_factory() as client:
                response = await client.get(
                    provider.user_info_url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                        "User-Agent": USER_AGENT,
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Profile fetch from {key} failed: {type(e).__name__}")
            raise UnexpectedException(
                f"Failed to fetch user info from {key}", {"error": type(e).__name__}
            ) from e
        except ValueError as e:
            raise UnexpectedException(f"Failed to parse user info from {key}") from e

        if not isinstance(payload, dict):
            raise UnexpectedException(f"Failed to parse user info from {key}")
        return payload


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
