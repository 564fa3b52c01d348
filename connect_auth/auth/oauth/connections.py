"""Listing and removal of an account's provider links."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import joinedload, sessionmaker

from ...database import session_scope
from ...exceptions import NotFoundException
from ..models import OAuthConnection, OAuthProvider

logger = logging.getLogger(__name__)


class ConnectionRepository:
    """Read and unlink OAuthConnection rows for one account."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def list_connections(self, account_id: UUID) -> list[OAuthConnection]:
        """Provider links of an account, with their provider loaded."""
        with session_scope(self._session_factory, "list oauth connections") as db:
            return list(
                db.scalars(
                    select(OAuthConnection)
                    .options(joinedload(OAuthConnection.provider))
                    .where(OAuthConnection.account_id == account_id)
                    .order_by(OAuthConnection.created_at)
                )
            )

    def unlink(self, account_id: UUID, provider_key: str) -> None:
        """
        Remove the account's link to one provider.

        Raises:
            NotFoundException: If the account has no link to that provider
        """
        with session_scope(self._session_factory, "unlink oauth connection") as db:
            connection = db.scalars(
                select(OAuthConnection)
                .join(OAuthProvider, OAuthConnection.provider_id == OAuthProvider.id)
                .where(
                    OAuthConnection.account_id == account_id,
                    OAuthProvider.provider_key == provider_key.lower(),
                )
            ).first()
            if connection is None:
                raise NotFoundException("OAuth connection", f"{account_id}/{provider_key}")
            db.delete(connection)

        logger.info(f"Unlinked {provider_key} from account {account_id}")
