"""
Database models for identity, verification tokens and OAuth federation.

This module defines the SQLAlchemy models for accounts, single-use
verification tokens, administratively configured OAuth providers and the
links between accounts and provider identities. Timestamps are naive UTC.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..clock import utcnow
from .types import Role

Base = declarative_base()


class Account(Base):  # type: ignore[valid-type, misc]
    """Local account, created by registration or OAuth provisioning."""

    __tablename__ = "accounts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)

    # Profile information
    display_name = Column(String(255))
    avatar_url = Column(String(1024))
    role = Column(String(20), nullable=False, default=Role.USER.value)

    # Status
    email_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    # Relationships
    oauth_connections = relationship("OAuthConnection", back_populates="account")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, username={self.username})>"


class VerificationToken(Base):  # type: ignore[valid-type, misc]
    """
    Single-use, typed, expiring token.

    Redeemable iff ``redeemed_at`` is NULL and the current time is before
    ``expires_at``. The partial unique index keeps at most one unredeemed
    token per (account, purpose).
    """

    __tablename__ = "verification_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True)
    token = Column(String(64), unique=True, nullable=False)
    purpose = Column(String(32), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    redeemed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index(
            "uq_verification_tokens_active",
            "account_id",
            "purpose",
            unique=True,
            sqlite_where=text("redeemed_at IS NULL"),
            postgresql_where=text("redeemed_at IS NULL"),
        ),
        Index("idx_verification_tokens_expires", "expires_at"),
    )

    def is_redeemable(self, now: datetime) -> bool:
        return self.redeemed_at is None and now < self.expires_at

    def __repr__(self) -> str:
        return f"<VerificationToken(id={self.id}, purpose={self.purpose})>"


class OAuthProvider(Base):  # type: ignore[valid-type, misc]
    """OAuth provider configuration, read-only during a request."""

    __tablename__ = "oauth_providers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    provider_key = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    client_id = Column(String(255))
    client_secret = Column(String(255))
    auth_url = Column(String(512), nullable=False)
    token_url = Column(String(512), nullable=False)
    user_info_url = Column(String(512), nullable=False)
    redirect_url = Column(String(512), nullable=False)
    scope = Column(String(255), nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    icon_url = Column(String(512))

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    connections = relationship("OAuthConnection", back_populates="provider")

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        return f"<OAuthProvider(key={self.provider_key}, active={self.is_active})>"


class OAuthConnection(Base):  # type: ignore[valid-type, misc]
    """Link between an account and a (provider, provider-native id) identity."""

    __tablename__ = "oauth_connections"

    id = Column(Uuid, primary_key=True, default=uuid4)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    provider_id = Column(
        Uuid, ForeignKey("oauth_providers.id", ondelete="CASCADE"), nullable=False
    )
    provider_user_id = Column(String(255), nullable=False)

    # Cached profile
    email = Column(String(255))
    name = Column(String(255))
    avatar_url = Column(String(1024))
    raw_profile = Column(JSON)

    # Provider tokens
    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    account = relationship("Account", back_populates="oauth_connections")
    provider = relationship("OAuthProvider", back_populates="connections")

    __table_args__ = (
        UniqueConstraint("account_id", "provider_id", name="uq_oauth_connection_account_provider"),
        UniqueConstraint(
            "provider_id", "provider_user_id", name="uq_oauth_connection_provider_identity"
        ),
        Index("idx_oauth_connections_account", "account_id"),
    )

    def __repr__(self) -> str:
        return f"<OAuthConnection(account_id={self.account_id}, provider_id={self.provider_id})>"
