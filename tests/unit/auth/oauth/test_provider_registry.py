"""
Unit tests for OAuth provider administration.
"""

import pytest
from sqlalchemy import update

from connect_auth.auth.models import OAuthProvider
from connect_auth.auth.oauth.providers import ProviderRegistry
from connect_auth.clock import utcnow
from connect_auth.config import OAuthProviderSettings
from connect_auth.database import session_scope
from connect_auth.exceptions import ConfigurationException, NotFoundException


def _settings(key: str, client_id: str = "id", client_secret: str = "secret"):
    return OAuthProviderSettings(
        provider_key=key,
        display_name=key.title(),
        client_id=client_id,
        client_secret=client_secret,
        auth_url=f"https://{key}.example.io/authorize",
        token_url=f"https://{key}.example.io/token",
        user_info_url=f"https://{key}.example.io/user",
        redirect_url=f"https://api.connect.io/api/auth/oauth/{key}/callback",
        scope="openid email",
    )


class TestProviderRegistry:
    """Test provider lookup and administration."""

    def test_get_is_case_insensitive(self, provider_registry):
        assert provider_registry.get("GitHub").provider_key == "github"
        assert provider_registry.get("gitlab") is None

    def test_require_active_unknown(self, provider_registry):
        with pytest.raises(NotFoundException):
            provider_registry.require_active("gitlab")

    def test_require_active_inactive(self, provider_registry):
        provider_registry.deactivate("github")

        with pytest.raises(ConfigurationException):
            provider_registry.require_active("github")

    def test_require_active_without_credentials(self, session_factory):
        registry = ProviderRegistry(session_factory)
        registry.save(_settings("gitlab", client_id="", client_secret=""))

        with pytest.raises(ConfigurationException):
            registry.require_active("gitlab")

    def test_list_active_orders_by_display_name(self, provider_registry):
        provider_registry.deactivate("google")
        provider_registry.save(_settings("bitbucket"))

        keys = [p.provider_key for p in provider_registry.list_active()]

        assert keys == ["bitbucket", "github"]

    def test_save_overwrites(self, provider_registry):
        provider_registry.save(_settings("github", client_id="rotated"))

        assert provider_registry.get("github").client_id == "rotated"

    def test_deactivate_unknown(self, provider_registry):
        with pytest.raises(NotFoundException):
            provider_registry.deactivate("gitlab")


class TestBootstrap:
    """Test seeding from deployment settings."""

    def test_inserts_only_configured_providers(self, session_factory):
        registry = ProviderRegistry(session_factory)

        created = registry.bootstrap(
            {
                "github": _settings("github"),
                "google": _settings("google", client_id="", client_secret=""),
            }
        )

        assert created == ["github"]
        assert registry.get("google") is None

    def test_keeps_existing_rows(self, session_factory):
        registry = ProviderRegistry(session_factory)
        registry.save(_settings("github", client_id="edited-by-admin"))

        created = registry.bootstrap({"github": _settings("github", client_id="from-env")})

        assert created == []
        assert registry.get("github").client_id == "edited-by-admin"

    def test_does_not_resurrect_deleted_provider(self, session_factory):
        registry = ProviderRegistry(session_factory)
        registry.save(_settings("github"))
        with session_scope(session_factory) as db:
            db.execute(update(OAuthProvider).values(deleted_at=utcnow()))

        assert registry.bootstrap({"github": _settings("github")}) == []
        assert registry.get("github") is None
