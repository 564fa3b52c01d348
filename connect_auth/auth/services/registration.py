"""
Account registration service.

Handles registration with email verification, email and username
validation, verification-token redemption and verification resends.
"""

import asyncio
import logging
import re

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.orm import Session, sessionmaker

from ...database import run_in_transaction, session_scope
from ...exceptions import InvalidVerificationTokenException, ValidationException
from ..models import Account, VerificationToken
from ..repositories import AccountRepository, normalize_email, username_base_from_email
from ..types import RegistrationData, Role, TokenPurpose
from .delivery import TokenDelivery
from .password_service import PasswordService
from .verification_tokens import VerificationTokenManager

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")

VERIFICATION_ACKNOWLEDGEMENT = (
    "If an unverified account exists for that email, a verification link has been sent."
)


class RegistrationService:
    """Account registration service."""

    def __init__(
        self,
        session_factory: sessionmaker,
        password_service: PasswordService,
        token_manager: VerificationTokenManager,
        accounts: AccountRepository,
        delivery: TokenDelivery,
        email_verification_ttl: int = 86400,
    ):
        self._session_factory = session_factory
        self.password_service = password_service
        self.token_manager = token_manager
        self.accounts = accounts
        self.delivery = delivery
        self.email_verification_ttl = email_verification_ttl

    async def register_with_verification(
        self, data: RegistrationData
    ) -> tuple[Account, VerificationToken]:
        """
        Register an account and issue its first email-verification token.

        The account insert and the token insert share one transaction:
        either both persist or neither does.

        Args:
            data: Email, password and optional username/display name

        Returns:
            The new account (email_verified=False) and its verification token

        Raises:
            ValidationException: If input is malformed or the email/username is taken
        """
        email = self._validate_email(data.email)
        if data.username:
            self._validate_username(data.username)
        self.password_service.ensure_strong(data.password)
        password_hash = await asyncio.to_thread(self.password_service.hash_password, data.password)

        def work(db: Session) -> tuple[Account, VerificationToken]:
            self._check_account_exists(db, email, data.username)
            username = data.username or self.accounts.unique_username(
                db, username_base_from_email(email)
            )
            account = Account(
                email=email,
                username=username,
                password_hash=password_hash,
                display_name=data.display_name or username,
                role=Role.USER.value,
                email_verified=False,
                is_active=True,
            )
            db.add(account)
            db.flush()
            token = self.token_manager.issue(
                account.id, TokenPurpose.EMAIL_VERIFICATION, self.email_verification_ttl, db=db
            )
            return account, token

        account, token = run_in_transaction(self._session_factory, work, "register account")
        logger.info(f"Registered account {account.id} ({account.username})")

        self._deliver(account, TokenPurpose.EMAIL_VERIFICATION, token.token)
        return account, token

    async def verify_email(self, token: str) -> Account:
        """
        Redeem an email-verification token and mark the account verified.

        An already verified account is left unchanged, but the token is
        still consumed.

        Raises:
            InvalidVerificationTokenException: If the token cannot be redeemed
        """
        with session_scope(self._session_factory, "verify email") as db:
            account_id = self.token_manager.redeem(token, TokenPurpose.EMAIL_VERIFICATION, db=db)
            account = self.accounts.find_by_id(db, account_id) if account_id else None
            if account is None:
                raise InvalidVerificationTokenException()

            if account.email_verified:
                logger.info(f"Account {account.id} already verified; token consumed")
            else:
                account.email_verified = True
                logger.info(f"Verified email for account {account.id}")

        return account

    async def resend_verification(self, email: str) -> str:
        """
        Issue a fresh verification token for an unverified account.

        Always returns the same acknowledgement; older tokens are retired.
        """
        try:
            with session_scope(self._session_factory, "resend verification") as db:
                account = self.accounts.find_by_email(db, email)
                if account is None or account.email_verified:
                    logger.info("Verification resend requested for unknown or verified email")
                    return VERIFICATION_ACKNOWLEDGEMENT
                token = self.token_manager.issue(
                    account.id, TokenPurpose.EMAIL_VERIFICATION, self.email_verification_ttl, db=db
                )
            self._deliver(account, TokenPurpose.EMAIL_VERIFICATION, token.token)
        except Exception as e:
            logger.error(f"Verification resend failed: {e}", exc_info=True)

        return VERIFICATION_ACKNOWLEDGEMENT

    def _deliver(self, account: Account, purpose: TokenPurpose, token: str) -> None:
        try:
            self.delivery.deliver(account, purpose, token)
        except Exception as e:
            logger.error(f"Delivery of {purpose.value} token failed: {e}", exc_info=True)

    def _validate_email(self, email: str) -> str:
        """Validate and normalize email address."""
        try:
            valid_email = validate_email(email, check_deliverability=False)
            return normalize_email(valid_email.normalized)
        except EmailNotValidError as e:
            raise ValidationException(f"Invalid email: {e!s}")

    def _validate_username(self, username: str) -> None:
        """Validate username format."""
        if not USERNAME_PATTERN.match(username):
            raise ValidationException("Username must be 3-30 characters, alphanumeric with _ or -")

    def _check_account_exists(self, db: Session, email: str, username: str | None) -> None:
        """Check if an account with the email or username already exists."""
        if self.accounts.email_exists(db, email):
            raise ValidationException("Email already registered")
        if username and self.accounts.username_exists(db, username):
            raise ValidationException("Username already taken")
