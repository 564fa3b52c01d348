"""
OAuth federation: authorization URL construction and callback handling.

The callback verifies ``state``, exchanges the code, fetches and normalizes
the profile, then links or provisions the local account and upserts its
OAuthConnection in one transaction. If a concurrent callback for the same
identity wins a uniqueness race, the whole transaction is retried, so a
new identity always ends up with exactly one account and one connection.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ...clock import utcnow
from ...database import run_in_transaction
from ...exceptions import AuthenticationException, ValidationException
from ..jwt_service import JWTService
from ..models import Account, OAuthConnection
from ..repositories import AccountRepository, normalize_email, username_base_from_email
from ..services.password_service import PasswordService
from ..types import FederationResult, NormalizedProfile, ProviderTokens, Role
from .client import OAuthClient
from .normalizers import ProfileNormalizer, normalizer_for
from .providers import ProviderRegistry
from .state import OAuthStateSigner, RedirectPolicy

logger = logging.getLogger(__name__)


class OAuthFederator:
    """Entry point for federated sign-in."""

    def __init__(
        self,
        session_factory: sessionmaker,
        providers: ProviderRegistry,
        client: OAuthClient,
        state_signer: OAuthStateSigner,
        redirect_policy: RedirectPolicy,
        jwt_service: JWTService,
        password_service: PasswordService,
        accounts: AccountRepository,
        normalizers: dict[str, ProfileNormalizer] | None = None,
        clock: Callable[[], datetime] = utcnow,
        require_state: bool = True,
    ):
        self._session_factory = session_factory
        self.providers = providers
        self.client = client
        self.state_signer = state_signer
        self.redirect_policy = redirect_policy
        self.jwt_service = jwt_service
        self.password_service = password_service
        self.accounts = accounts
        self.normalizers = normalizers
        self._clock = clock
        self.require_state = require_state

    async def start(self, provider_key: str, redirect_to: str | None = None) -> str:
        """
        Build the provider authorization URL.

        Args:
            provider_key: Provider to federate with
            redirect_to: Optional post-login target, bound into the signed state

        Returns:
            URL to send the browser to

        Raises:
            NotFoundException: Unknown provider
            ConfigurationException: Inactive or credential-less provider
            ValidationException: Redirect target outside the allow-list
        """
        provider = self.providers.require_active(provider_key)
        target = self.redirect_policy.validate(redirect_to)
        state = self.state_signer.sign(provider.provider_key, target)

        params = {
            "response_type": "code",
            "client_id": provider.client_id,
            "redirect_uri": provider.redirect_url,
            "scope": provider.scope,
            "state": state,
        }
        separator = "&" if "?" in provider.auth_url else "?"
        logger.info(f"Starting OAuth flow with {provider.provider_key}")
        return f"{provider.auth_url}{separator}{urlencode(params)}"

    async def callback(
        self,
        provider_key: str,
        code: str | None,
        state: str | None = None,
        error: str | None = None,
    ) -> FederationResult:
        """
        Complete a federated sign-in.

        Returns:
            Session pair, account id, whether the account was created, and the
            resolved redirect target

        Raises:
            AuthenticationException: Provider error, bad state, inactive account
            ValidationException: Missing state or authorization code
            CodeExchangeException: Code could not be exchanged
            UnexpectedException: Profile could not be fetched or normalized
        """
        if error:
            logger.warning(f"OAuth provider {provider_key} returned error: {error}")
            raise AuthenticationException(
                f"OAuth provider returned an error: {error}", reason="provider_error"
            )

        provider = self.providers.require_active(provider_key)

        redirect_to = None
        if state:
            redirect_to = self.redirect_policy.resolve(
                self.state_signer.verify(state, provider.provider_key)
            )
        elif self.require_state:
            logger.warning(f"OAuth callback for {provider.provider_key} arrived without state")
            raise ValidationException("Missing OAuth state")
        if not code:
            raise ValidationException("Missing authorization code")

        tokens = await self.client.exchange_code(provider, code)
        payload = await self.client.fetch_profile(provider, tokens.access_token)
        profile = normalizer_for(provider.provider_key, self.normalizers).normalize(
            provider.provider_key, payload
        )

        account, created = await asyncio.to_thread(
            run_in_transaction,
            self._session_factory,
            lambda db: self._link_account(db, provider.id, profile, tokens),
            operation="link oauth account",
        )

        session = self.jwt_service.mint(account)
        logger.info(
            f"OAuth sign-in via {provider.provider_key} for account {account.id} "
            f"({'created' if created else 'existing'})"
        )
        return FederationResult(
            session=session,
            account_id=account.id,
            created=created,
            redirect_to=redirect_to,
        )

    def _link_account(
        self,
        db: Session,
        provider_id: UUID,
        profile: NormalizedProfile,
        tokens: ProviderTokens,
    ) -> tuple[Account, bool]:
        now = self._clock()
        created = False

        account = self.accounts.find_by_email(db, profile.email)
        if account is None:
            if self.accounts.email_retired(db, profile.email):
                logger.warning("OAuth sign-in refused: email belongs to a deleted account")
                raise AuthenticationException("Invalid credentials")
            account = self._provision_account(db, profile, now)
            created = True
        else:
            if not account.is_active:
                logger.warning(f"OAuth sign-in refused for inactive account {account.id}")
                raise AuthenticationException("Invalid credentials")
            account.last_login_at = now
            if not account.avatar_url and profile.avatar_url:
                account.avatar_url = profile.avatar_url

        self._upsert_connection(db, account.id, provider_id, profile, tokens, now)
        return account, created

    def _provision_account(self, db: Session, profile: NormalizedProfile, now: datetime) -> Account:
        email = normalize_email(profile.email)
        username = self.accounts.unique_username(db, username_base_from_email(email))
        password_hash = self.password_service.hash_password(
            self.password_service.generate_unusable_password()
        )
        account = Account(
            email=email,
            username=username,
            password_hash=password_hash,
            display_name=profile.display_name,
            avatar_url=profile.avatar_url,
            role=Role.USER.value,
            email_verified=True,
            is_active=True,
            last_login_at=now,
        )
        db.add(account)
        db.flush()
        logger.info(f"Provisioned account {account.id} ({username}) from OAuth profile")
        return account

    def _upsert_connection(
        self,
        db: Session,
        account_id: UUID,
        provider_id: UUID,
        profile: NormalizedProfile,
        tokens: ProviderTokens,
        now: datetime,
    ) -> OAuthConnection:
        by_account = db.scalars(
            select(OAuthConnection).where(
                OAuthConnection.account_id == account_id,
                OAuthConnection.provider_id == provider_id,
            )
        ).first()
        by_identity = db.scalars(
            select(OAuthConnection).where(
                OAuthConnection.provider_id == provider_id,
                OAuthConnection.provider_user_id == profile.provider_user_id,
            )
        ).first()

        if by_identity is not None and by_identity.account_id != account_id:
            # The provider identity now resolves to another local account
            logger.warning(
                f"Moving provider identity from account {by_identity.account_id} "
                f"to account {account_id}"
            )
            if by_account is not None:
                db.delete(by_identity)
                db.flush()
            else:
                by_identity.account_id = account_id

        connection = by_account or by_identity
        if connection is None:
            connection = OAuthConnection(
                account_id=account_id,
                provider_id=provider_id,
                provider_user_id=profile.provider_user_id,
            )
            db.add(connection)

        connection.provider_user_id = profile.provider_user_id
        connection.email = profile.email
        connection.name = profile.display_name
        connection.avatar_url = profile.avatar_url
        connection.raw_profile = profile.raw
        connection.access_token = tokens.access_token
        if tokens.refresh_token:
            connection.refresh_token = tokens.refresh_token
        connection.token_expires_at = (
            now + timedelta(seconds=tokens.expires_in) if tokens.expires_in else None
        )
        connection.updated_at = now
        db.flush()
        return connection
