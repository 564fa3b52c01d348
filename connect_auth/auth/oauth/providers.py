"""
OAuth provider registry.

Providers live in the ``oauth_providers`` table and are managed by
administrators; request handling only reads them. ``bootstrap`` seeds the
table from deployment settings without overwriting edits made since.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ...clock import utcnow
from ...config import OAuthProviderSettings
from ...database import session_scope
from ...exceptions import ConfigurationException, NotFoundException
from ..models import OAuthProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Lookup and administration of OAuth provider configuration."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, provider_key: str) -> OAuthProvider | None:
        with session_scope(self._session_factory, "get oauth provider") as db:
            return db.scalars(
                select(OAuthProvider).where(
                    OAuthProvider.provider_key == provider_key.lower(),
                    OAuthProvider.deleted_at.is_(None),
                )
            ).first()

    def require_active(self, provider_key: str) -> OAuthProvider:
        """
        Resolve a provider that can be used for federation.

        Raises:
            NotFoundException: If no provider has this key
            ConfigurationException: If the provider is inactive or lacks credentials
        """
        provider = self.get(provider_key)
        if provider is None:
            raise NotFoundException("OAuth provider", provider_key)
        if not provider.is_active:
            raise ConfigurationException(
                f"OAuth provider {provider_key} is not active", setting=provider_key
            )
        if not provider.has_credentials:
            raise ConfigurationException(
                f"OAuth provider {provider_key} has no client credentials", setting=provider_key
            )
        return provider

    def list_active(self) -> list[OAuthProvider]:
        with session_scope(self._session_factory, "list oauth providers") as db:
            return list(
                db.scalars(
                    select(OAuthProvider)
                    .where(OAuthProvider.is_active.is_(True), OAuthProvider.deleted_at.is_(None))
                    .order_by(OAuthProvider.display_name)
                )
            )

    def save(self, settings: OAuthProviderSettings, is_active: bool = True) -> OAuthProvider:
        """Create the provider or overwrite its configuration."""
        key = settings.provider_key.lower()
        with session_scope(self._session_factory, "save oauth provider") as db:
            provider = db.scalars(
                select(OAuthProvider).where(OAuthProvider.provider_key == key)
            ).first()
            if provider is None:
                provider = OAuthProvider(provider_key=key)
                db.add(provider)

            provider.display_name = settings.display_name
            provider.client_id = settings.client_id
            provider.client_secret = settings.client_secret
            provider.auth_url = settings.auth_url
            provider.token_url = settings.token_url
            provider.user_info_url = settings.user_info_url
            provider.redirect_url = settings.redirect_url
            provider.scope = settings.scope
            provider.icon_url = settings.icon_url
            provider.is_active = is_active
            provider.deleted_at = None
            db.flush()

        logger.info(f"Saved OAuth provider {key} (active={is_active})")
        return provider

    def deactivate(self, provider_key: str) -> None:
        with session_scope(self._session_factory, "deactivate oauth provider") as db:
            provider = db.scalars(
                select(OAuthProvider).where(OAuthProvider.provider_key == provider_key.lower())
            ).first()
            if provider is None:
                raise NotFoundException("OAuth provider", provider_key)
            provider.is_active = False
            provider.updated_at = utcnow()
        logger.info(f"Deactivated OAuth provider {provider_key}")

    def _exists(self, provider_key: str) -> bool:
        """True for any row with this key, including soft-deleted ones."""
        with session_scope(self._session_factory, "check oauth provider") as db:
            return (
                db.scalar(
                    select(OAuthProvider.id).where(
                        OAuthProvider.provider_key == provider_key.lower()
                    )
                )
                is not None
            )

    def bootstrap(self, providers: dict[str, OAuthProviderSettings]) -> list[str]:
        """
        Insert configured providers that are not in the table yet.

        Returns:
            Keys of the providers that were created
        """
        created = []
        for key, settings in providers.items():
            if not settings.is_configured:
                logger.debug(f"Skipping OAuth provider {key}: no client credentials")
                continue
            if self._exists(key):
                continue
            self.save(settings)
            created.append(key)

        if created:
            logger.info(f"Bootstrapped OAuth providers: {', '.join(created)}")
        return created
