"""
Single-use verification token lifecycle.

A token is issued, then either redeemed once or left to expire. Redemption
is a conditional UPDATE on ``redeemed_at IS NULL AND expires_at > now`` so
concurrent redeemers of the same token can never both succeed. Issuing a
token retires every unredeemed token of the same (account, purpose); the
partial unique index on the table backs that up for concurrent issuers.
"""

import logging
import secrets
import string
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from ...clock import utcnow
from ...database import joined_scope, run_in_transaction, session_scope
from ...exceptions import InvalidVerificationTokenException, ValidationException
from ..models import VerificationToken
from ..types import TokenPurpose

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 32


def _as_purpose(purpose: TokenPurpose | str) -> TokenPurpose:
    try:
        return TokenPurpose(purpose)
    except ValueError:
        raise ValidationException(f"Unknown token purpose: {purpose}")


class VerificationTokenManager:
    """Issues, redeems and purges typed single-use tokens."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        token_length: int = TOKEN_LENGTH,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._token_length = token_length

    def generate_token(self) -> str:
        """Random alphanumeric token from the OS CSPRNG."""
        return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(self._token_length))

    def issue(
        self,
        account_id: UUID | None,
        purpose: TokenPurpose | str,
        ttl: int | timedelta,
        db: Session | None = None,
    ) -> VerificationToken:
        """
        Issue a new token, retiring older unredeemed tokens of the same purpose.

        Args:
            account_id: Owning account, or None for an ownerless token
            purpose: What the token may be redeemed for
            ttl: Lifetime in seconds or as a timedelta
            db: Join this session's transaction instead of committing alone

        Returns:
            The persisted token row
        """
        kind = _as_purpose(purpose)
        lifetime = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)

        def work(session: Session) -> VerificationToken:
            now = self._clock()
            if account_id is not None:
                retired = session.execute(
                    update(VerificationToken)
                    .where(
                        VerificationToken.account_id == account_id,
                        VerificationToken.purpose == kind.value,
                        VerificationToken.redeemed_at.is_(None),
                    )
                    .values(redeemed_at=now)
                    .execution_options(synchronize_session=False)
                )
                if retired.rowcount:
                    logger.info(
                        f"Retired {retired.rowcount} unredeemed {kind.value} token(s) "
                        f"for account {account_id}"
                    )

            record = VerificationToken(
                account_id=account_id,
                token=self.generate_token(),
                purpose=kind.value,
                expires_at=now + lifetime,
                created_at=now,
            )
            session.add(record)
            session.flush()
            return record

        if db is not None:
            record = work(db)
        else:
            record = run_in_transaction(
                self._session_factory, work, operation="issue verification token"
            )

        logger.info(f"Issued {kind.value} token for account {account_id}")
        return record

    def redeem(
        self, token: str, purpose: TokenPurpose | str, db: Session | None = None
    ) -> UUID | None:
        """
        Redeem a token exactly once.

        Returns:
            The owning account id (None for ownerless tokens)

        Raises:
            InvalidVerificationTokenException: If the token is unknown, already
                redeemed, expired, or issued for a different purpose
        """
        kind = _as_purpose(purpose)

        with joined_scope(self._session_factory, db, "redeem verification token") as session:
            now = self._clock()
            row = session.execute(
                select(VerificationToken.id, VerificationToken.account_id).where(
                    VerificationToken.token == token,
                    VerificationToken.purpose == kind.value,
                )
            ).first()
            if row is None:
                logger.warning(f"Redemption of unknown {kind.value} token rejected")
                raise InvalidVerificationTokenException()

            result = session.execute(
                update(VerificationToken)
                .where(
                    VerificationToken.id == row.id,
                    VerificationToken.redeemed_at.is_(None),
                    VerificationToken.expires_at > now,
                )
                .values(redeemed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(f"Redemption of used or expired {kind.value} token {row.id} rejected")
                raise InvalidVerificationTokenException()

        logger.info(f"Redeemed {kind.value} token {row.id}")
        return row.account_id

    def purge_expired(self) -> int:
        """Delete every token past its expiry, redeemed or not. Returns the row count."""
        with session_scope(self._session_factory, "purge expired tokens") as session:
            result = session.execute(
                delete(VerificationToken)
                .where(VerificationToken.expires_at < self._clock())
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        logger.info(f"Purged {count} expired verification token(s)")
        return count

    def find_active(
        self, account_id: UUID, purpose: TokenPurpose | str
    ) -> list[VerificationToken]:
        """Tokens of the given purpose that could still be redeemed."""
        kind = _as_purpose(purpose)
        with session_scope(self._session_factory, "find active tokens") as session:
            return list(
                session.scalars(
                    select(VerificationToken).where(
                        VerificationToken.account_id == account_id,
                        VerificationToken.purpose == kind.value,
                        VerificationToken.redeemed_at.is_(None),
                        VerificationToken.expires_at > self._clock(),
                    )
                )
            )
