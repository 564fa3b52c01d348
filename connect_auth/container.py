"""
Dependency Injection Container - wires the identity core from configuration.

The HTTP layer builds one container at startup and pulls the two entry
points from it: ``authentication`` for direct-credential flows and
``federator`` for OAuth.
"""

import logging
from collections.abc import Callable

import httpx
from sqlalchemy.engine import Engine

from .auth.background import BackgroundTaskRunner
from .auth.jwt_service import JWTService
from .auth.oauth import (
    ConnectionRepository,
    OAuthClient,
    OAuthFederator,
    OAuthStateSigner,
    ProviderRegistry,
    RedirectPolicy,
)
from .auth.repositories import AccountRepository
from .auth.scheduler import TokenCleanupScheduler
from .auth.services import (
    AuthenticationService,
    LoggingTokenDelivery,
    PasswordHasher,
    PasswordService,
    RegistrationService,
    TokenDelivery,
    VerificationTokenManager,
)
from .config import AppConfig
from .database import build_engine, create_session_factory, init_schema

logger = logging.getLogger(__name__)


class IdentityContainer:
    """
    Container for the identity core.

    Every collaborator is created once; the optional arguments replace the
    pieces that talk to the outside world.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        engine: Engine | None = None,
        password_hasher: PasswordHasher | None = None,
        delivery: TokenDelivery | None = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.config = config or AppConfig.from_env()
        self.engine = engine or build_engine(self.config.database_url)
        init_schema(self.engine)
        self.session_factory = create_session_factory(self.engine)

        self._register_core(password_hasher, delivery)
        self._register_oauth(http_client_factory)

        logger.info("Identity container initialized")

    def _register_core(
        self, password_hasher: PasswordHasher | None, delivery: TokenDelivery | None
    ) -> None:
        auth_config = self.config.auth

        self.jwt_service = JWTService.from_config(auth_config)
        self.password_service = PasswordService(password_hasher)
        self.token_manager = VerificationTokenManager(self.session_factory)
        self.accounts = AccountRepository(self.session_factory)
        self.background = BackgroundTaskRunner(self.config.background_max_concurrency)
        self.delivery = delivery or LoggingTokenDelivery(self.config.oauth.frontend_url)
        self.cleanup_scheduler = TokenCleanupScheduler(
            self.token_manager, self.config.token_cleanup_interval
        )

        self.registration = RegistrationService(
            self.session_factory,
            self.password_service,
            self.token_manager,
            self.accounts,
            self.delivery,
            email_verification_ttl=auth_config.email_verification_ttl,
        )
        self.authentication = AuthenticationService(
            self.session_factory,
            self.jwt_service,
            self.password_service,
            self.token_manager,
            self.registration,
            self.accounts,
            self.background,
            self.delivery,
            password_reset_ttl=auth_config.password_reset_ttl,
            require_verified_email=auth_config.require_verified_email,
        )

    def _register_oauth(
        self, http_client_factory: Callable[[], httpx.AsyncClient] | None
    ) -> None:
        oauth_config = self.config.oauth

        self.providers = ProviderRegistry(self.session_factory)
        self.connections = ConnectionRepository(self.session_factory)
        self.providers.bootstrap(oauth_config.providers)

        self.federator = OAuthFederator(
            self.session_factory,
            self.providers,
            OAuthClient(oauth_config.http_timeout, http_client_factory),
            OAuthStateSigner(self.config.auth.jwt_secret, oauth_config.state_ttl),
            RedirectPolicy(oauth_config.frontend_url, oauth_config.additional_redirect_origins),
            self.jwt_service,
            self.password_service,
            self.accounts,
            require_state=oauth_config.require_state,
        )

    async def start(self) -> None:
        """Start background maintenance."""
        await self.cleanup_scheduler.start()

    async def shutdown(self) -> None:
        """Stop maintenance, finish pending background work and release connections."""
        await self.cleanup_scheduler.stop()
        await self.background.drain()
        self.engine.dispose()
        logger.info("Identity container shut down")
