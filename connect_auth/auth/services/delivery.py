"""
Out-of-band delivery of verification tokens.

The identity core never sends email itself. It hands each freshly issued
token to a TokenDelivery implementation; the default one only builds the
frontend link and logs that a delivery was requested.
"""

import logging
from typing import Protocol

from ..models import Account
from ..types import TokenPurpose

logger = logging.getLogger(__name__)

_LINK_PATHS = {
    TokenPurpose.EMAIL_VERIFICATION: "auth/verify-email",
    TokenPurpose.PASSWORD_RESET: "auth/reset-password",
}


class TokenDelivery(Protocol):
    """Sends a token to the account owner, usually as an email link."""

    def deliver(self, account: Account, purpose: TokenPurpose, token: str) -> None: ...


class LoggingTokenDelivery:
    """Default delivery: builds the link and logs the request, never the token."""

    def __init__(self, frontend_url: str) -> None:
        self.frontend_url = frontend_url.rstrip("/")

    def link_for(self, purpose: TokenPurpose, token: str) -> str:
        return f"{self.frontend_url}/{_LINK_PATHS[purpose]}/{token}"

    def deliver(self, account: Account, purpose: TokenPurpose, token: str) -> None:
        logger.info(
            f"Prepared {purpose.value} link under {self.frontend_url}/{_LINK_PATHS[purpose]} "
            f"for account {account.id}"
        )
