"""
Account persistence helpers.

Query helpers shared by the direct-credential and federated flows take the
caller's session so lookups and writes can share one transaction. Administrative
updates commit on their own. Soft-deleted accounts are invisible to all lookups.
"""

import logging
import re
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from ..clock import utcnow
from ..database import session_scope
from ..exceptions import NotFoundException, ValidationException
from .models import Account, OAuthConnection
from .types import Role

logger = logging.getLogger(__name__)

_USERNAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def username_base_from_email(email: str) -> str:
    """Local part of an email, reduced to characters valid in a username."""
    local = email.split("@", 1)[0]
    base = _USERNAME_UNSAFE.sub("", local)[:24]
    if len(base) < 3:
        base = f"{base}_user" if base else "user"
    return base


class AccountRepository:
    """Account lookups and small updates."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _live():
        return select(Account).where(Account.deleted_at.is_(None))

    def find_by_id(self, db: Session, account_id: UUID) -> Account | None:
        return db.scalars(self._live().where(Account.id == account_id)).first()

    def find_by_email(self, db: Session, email: str) -> Account | None:
        return db.scalars(
            self._live().where(func.lower(Account.email) == normalize_email(email))
        ).first()

    def find_by_identifier(self, db: Session, identifier: str) -> Account | None:
        """Find an account whose email or username matches the identifier."""
        return db.scalars(
            self._live().where(
                or_(
                    func.lower(Account.email) == normalize_email(identifier),
                    Account.username == identifier.strip(),
                )
            )
        ).first()

    def email_exists(self, db: Session, email: str) -> bool:
        return (
            db.scalar(
                select(Account.id).where(func.lower(Account.email) == normalize_email(email))
            )
            is not None
        )

    def username_exists(self, db: Session, username: str) -> bool:
        return db.scalar(select(Account.id).where(Account.username == username)) is not None

    def unique_username(self, db: Session, base: str) -> str:
        """
        First free username among base, base_1, base_2, ...

        Soft-deleted accounts still hold their usernames.
        """
        taken = set(
            db.scalars(
                select(Account.username).where(
                    or_(Account.username == base, Account.username.like(f"{base}\\_%", escape="\\"))
                )
            )
        )
        if base not in taken:
            return base
        suffix = 1
        while f"{base}_{suffix}" in taken:
            suffix += 1
        return f"{base}_{suffix}"

    def touch_last_login(self, account_id: UUID) -> None:
        """Record a login time in its own short transaction."""
        with session_scope(self._session_factory, "update last login") as db:
            db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(last_login_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        logger.debug(f"Updated last login for account {account_id}")

    def email_retired(self, db: Session, email: str) -> bool:
        """True if a soft-deleted account still holds this email."""
        return (
            db.scalar(
                select(Account.id).where(
                    func.lower(Account.email) == normalize_email(email),
                    Account.deleted_at.is_not(None),
                )
            )
            is not None
        )

    def _require(self, db: Session, account_id: UUID) -> Account:
        account = self.find_by_id(db, account_id)
        if account is None:
            raise NotFoundException("Account", account_id)
        return account

    def set_role(self, account_id: UUID, role: Role | str) -> Account:
        """
        Change an account's role.

        Sessions minted before the change keep the old role claim until they expire.

        Raises:
            ValidationException: Unknown role
            NotFoundException: Missing or deleted account
        """
        try:
            new_role = Role(role)
        except ValueError:
            raise ValidationException(f"Unknown role: {role}")

        with session_scope(self._session_factory, "set account role") as db:
            account = self._require(db, account_id)
            account.role = new_role.value
        logger.info(f"Set role of account {account_id} to {new_role.value}")
        return account

    def mark_verified(self, account_id: UUID) -> Account:
        """Mark the email verified without a token (administrative override)."""
        with session_scope(self._session_factory, "mark email verified") as db:
            account = self._require(db, account_id)
            account.email_verified = True
        logger.info(f"Marked email of account {account_id} verified by administrator")
        return account

    def soft_delete(self, account_id: UUID) -> None:
        """
        Deactivate an account and hide it from every lookup.

        The row is kept, so its email and username stay reserved. Provider
        links are removed in the same transaction.
        """
        with session_scope(self._session_factory, "delete account") as db:
            account = self._require(db, account_id)
            account.deleted_at = utcnow()
            account.is_active = False
            unlinked = db.execute(
                delete(OAuthConnection)
                .where(OAuthConnection.account_id == account_id)
                .execution_options(synchronize_session=False)
            ).rowcount
        logger.info(f"Soft-deleted account {account_id} and {unlinked or 0} provider link(s)")
