"""
Provider profile normalization.

Each provider returns a differently shaped profile document. A normalizer
reduces one to a NormalizedProfile. When a provider withholds the email,
the normalizer substitutes ``<native-username>@<provider_key>.user`` so the
same identity always maps to the same local email.
"""

import logging
from typing import Any

from ...exceptions import UnexpectedException
from ..types import NormalizedProfile

logger = logging.getLogger(__name__)


def synthetic_email(native_username: str, provider_key: str) -> str:
    return f"{native_username}@{provider_key}.user".lower()


class ProfileNormalizer:
    """
    Generic normalizer for OpenID Connect style profiles.

    Subclasses override the field lookups for providers that use their own
    names.
    """

    default_display_name = "User"

    def normalize(self, provider_key: str, payload: dict[str, Any]) -> NormalizedProfile:
        if not isinstance(payload, dict):
            raise UnexpectedException(f"Profile from {provider_key} is not a JSON object")

        native_id = self.native_id(payload)
        if native_id is None or str(native_id).strip() == "":
            raise UnexpectedException(
                f"Profile from {provider_key} has no user id", {"provider": provider_key}
            )
        native_id = str(native_id)
        username = self.native_username(payload)

        email = payload.get("email")
        if not isinstance(email, str) or not email.strip():
            email = synthetic_email(username or native_id, provider_key)
            logger.info(f"Profile from {provider_key} has no email; using placeholder {email}")

        return NormalizedProfile(
            provider_user_id=native_id,
            email=email.strip().lower(),
            display_name=self.display_name(payload, username),
            avatar_url=self.avatar_url(payload),
            raw=payload,
        )

    def native_id(self, payload: dict[str, Any]) -> Any:
        return payload.get("sub") or payload.get("id")

    def native_username(self, payload: dict[str, Any]) -> str | None:
        for field in ("preferred_username", "login", "username", "nickname"):
            value = payload.get(field)
            if isinstance(value, str) and value:
                return value
        return None

    def display_name(self, payload: dict[str, Any], username: str | None) -> str:
        return payload.get("name") or username or self.default_display_name

    def avatar_url(self, payload: dict[str, Any]) -> str | None:
        return payload.get("picture") or payload.get("avatar_url")


class GoogleProfileNormalizer(ProfileNormalizer):
    """Google userinfo v2: id, email, name, picture."""

    default_display_name = "Google User"

    def native_id(self, payload: dict[str, Any]) -> Any:
        return payload.get("id") or payload.get("sub")

    def native_username(self, payload: dict[str, Any]) -> str | None:
        # No username; fall back to the native id for placeholders
        return None

    def avatar_url(self, payload: dict[str, Any]) -> str | None:
        return payload.get("picture")


class GitHubProfileNormalizer(ProfileNormalizer):
    """GitHub /user: numeric id, login, optional email and name, avatar_url."""

    default_display_name = "GitHub User"

    def native_id(self, payload: dict[str, Any]) -> Any:
        return payload.get("id")

    def native_username(self, payload: dict[str, Any]) -> str | None:
        login = payload.get("login")
        return login if isinstance(login, str) and login else None

    def avatar_url(self, payload: dict[str, Any]) -> str | None:
        return payload.get("avatar_url")


DEFAULT_NORMALIZERS: dict[str, ProfileNormalizer] = {
    "google": GoogleProfileNormalizer(),
    "github": GitHubProfileNormalizer(),
}


def normalizer_for(
    provider_key: str, registry: dict[str, ProfileNormalizer] | None = None
) -> ProfileNormalizer:
    """Normalizer registered for the provider, or the generic one."""
    return (registry or DEFAULT_NORMALIZERS).get(provider_key.lower(), ProfileNormalizer())
