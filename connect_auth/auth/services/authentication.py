"""
Authentication service.

Entry point for direct-credential flows: login, logout, registration,
email verification, password reset and password change. Every flow that
ends in a session delegates token minting to the JWT service.
"""

import asyncio
import logging
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from ...database import session_scope
from ...exceptions import (
    AuthenticationException,
    InvalidTokenException,
    InvalidVerificationTokenException,
    NotFoundException,
)
from ..background import BackgroundTaskRunner
from ..jwt_service import JWTService
from ..models import Account, VerificationToken
from ..repositories import AccountRepository
from ..types import RegistrationData, SessionPair, TokenPurpose
from .delivery import TokenDelivery
from .password_service import PasswordService
from .registration import RegistrationService
from .verification_tokens import VerificationTokenManager

logger = logging.getLogger(__name__)

PASSWORD_RESET_ACKNOWLEDGEMENT = (
    "If an account exists for that email, a password reset link has been sent."
)


class AuthenticationService:
    """Account authentication service."""

    def __init__(
        self,
        session_factory: sessionmaker,
        jwt_service: JWTService,
        password_service: PasswordService,
        token_manager: VerificationTokenManager,
        registration: RegistrationService,
        accounts: AccountRepository,
        background: BackgroundTaskRunner,
        delivery: TokenDelivery,
        password_reset_ttl: int = 3600,
        require_verified_email: bool = False,
    ):
        self._session_factory = session_factory
        self.jwt_service = jwt_service
        self.password_service = password_service
        self.token_manager = token_manager
        self.registration = registration
        self.accounts = accounts
        self.background = background
        self.delivery = delivery
        self.password_reset_ttl = password_reset_ttl
        self.require_verified_email = require_verified_email

    async def login(self, identifier: str, password: str) -> SessionPair:
        """
        Authenticate by email or username and mint a session.

        Args:
            identifier: Email or username
            password: Account password

        Returns:
            Access/refresh session pair

        Raises:
            AuthenticationException: "Invalid credentials" for an unknown
                identifier, a wrong password or an inactive account
        """
        # Lookup and Argon2 verification run off the event loop
        account = await asyncio.to_thread(self._check_credentials, identifier, password)
        session = self.jwt_service.mint(account)

        self.background.submit(
            "update last login",
            self.accounts.touch_last_login,
            account.id,
            key=f"last_login:{account.id}",
        )
        logger.info(f"Login succeeded for account {account.id}")
        return session

    def _check_credentials(self, identifier: str, password: str) -> Account:
        with session_scope(self._session_factory, "login lookup") as db:
            account = self.accounts.find_by_identifier(db, identifier)

        # Always perform password verification to prevent timing attacks
        if account is None:
            self.password_service.verify_dummy(password)
            logger.warning("Login failed: unknown identifier")
            raise AuthenticationException("Invalid credentials")

        if not self.password_service.verify_password(password, account.password_hash):
            logger.warning(f"Login failed for account {account.id}: wrong password")
            raise AuthenticationException("Invalid credentials")

        if not account.is_active:
            logger.warning(f"Login failed for account {account.id}: account inactive")
            raise AuthenticationException("Invalid credentials")

        if self.require_verified_email and not account.email_verified:
            logger.info(f"Login refused for account {account.id}: email not verified")
            raise AuthenticationException(
                "Email address has not been verified", reason="email_unverified"
            )

        return account

    async def logout(self, account_id: UUID) -> None:
        """
        Confirm the account exists and record the logout.

        Issued tokens are not invalidated and stay valid until they expire.
        """
        with session_scope(self._session_factory, "logout") as db:
            account = self.accounts.find_by_id(db, account_id)
        if account is None:
            raise NotFoundException("Account", account_id)
        logger.info(f"Account {account_id} logged out")

    async def refresh(self, refresh_token: str) -> str:
        """Exchange a refresh token for a new access token."""
        return self.jwt_service.refresh(refresh_token)

    async def authenticate_token(self, access_token: str) -> Account:
        """Resolve a bearer token to an active account."""
        account_id = self.jwt_service.subject_of(access_token)
        with session_scope(self._session_factory, "authenticate token") as db:
            account = self.accounts.find_by_id(db, account_id)
        if account is None or not account.is_active:
            logger.warning(f"Valid token presented for missing or inactive account {account_id}")
            raise InvalidTokenException()
        return account

    async def register_with_verification(
        self, data: RegistrationData
    ) -> tuple[Account, VerificationToken]:
        """Register an account together with its first verification token."""
        return await self.registration.register_with_verification(data)

    async def verify_email(self, token: str) -> Account:
        """Redeem an email-verification token."""
        return await self.registration.verify_email(token)

    async def resend_verification(self, email: str) -> str:
        """Issue a new verification token; the answer never depends on the email."""
        return await self.registration.resend_verification(email)

    async def request_password_reset(self, email: str) -> str:
        """
        Start a password reset.

        A token is issued and delivered only when an active account owns the
        email. The returned acknowledgement is identical in every case and no
        failure reaches the caller.
        """
        try:
            with session_scope(self._session_factory, "request password reset") as db:
                account = self.accounts.find_by_email(db, email)
                if account is None or not account.is_active:
                    logger.info("Password reset requested for unknown email")
                    return PASSWORD_RESET_ACKNOWLEDGEMENT
                token = self.token_manager.issue(
                    account.id, TokenPurpose.PASSWORD_RESET, self.password_reset_ttl, db=db
                )
            self.delivery.deliver(account, TokenPurpose.PASSWORD_RESET, token.token)
        except Exception as e:
            logger.error(f"Password reset request failed: {e}", exc_info=True)

        return PASSWORD_RESET_ACKNOWLEDGEMENT

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Redeem a password-reset token and store the new password.

        Redemption and the credential update commit together.

        Raises:
            ValidationException: If the new password is too weak (token untouched)
            InvalidVerificationTokenException: If the token cannot be redeemed
        """
        self.password_service.ensure_strong(new_password)
        new_hash = self.password_service.hash_password(new_password)

        with session_scope(self._session_factory, "reset password") as db:
            account_id = self.token_manager.redeem(token, TokenPurpose.PASSWORD_RESET, db=db)
            account = self.accounts.find_by_id(db, account_id) if account_id else None
            if account is None:
                raise InvalidVerificationTokenException()
            account.password_hash = new_hash

        logger.info(f"Password reset for account {account.id}")

    async def change_password(
        self, account_id: UUID, current_password: str, new_password: str
    ) -> None:
        """Change a password after re-checking the current one."""
        self.password_service.ensure_strong(new_password)

        with session_scope(self._session_factory, "change password") as db:
            account = self.accounts.find_by_id(db, account_id)
            if account is None:
                raise NotFoundException("Account", account_id)
            if not self.password_service.verify_password(current_password, account.password_hash):
                raise AuthenticationException("Current password is incorrect")
            account.password_hash = self.password_service.hash_password(new_password)

        logger.info(f"Password changed for account {account_id}")
