"""
Unit tests for single-use verification tokens.
"""

import string
import threading
from datetime import timedelta

import pytest
from sqlalchemy import select

from connect_auth.auth.models import VerificationToken
from connect_auth.auth.types import TokenPurpose
from connect_auth.database import session_scope
from connect_auth.exceptions import (
    DuplicateRecordException,
    InvalidVerificationTokenException,
    ValidationException,
)


@pytest.fixture
def account(create_account):
    return create_account()


class TestIssue:
    """Test token issuance."""

    def test_token_shape(self, token_manager, account):
        record = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 86400)

        assert len(record.token) == 32
        assert set(record.token) <= set(string.ascii_letters + string.digits)
        assert record.purpose == "email_verification"
        assert record.redeemed_at is None

    def test_expiry_is_now_plus_ttl(self, token_manager, clock, account):
        record = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 3600)

        assert record.expires_at == clock.now + timedelta(seconds=3600)

    def test_accepts_timedelta_and_string_purpose(self, token_manager, clock, account):
        record = token_manager.issue(account.id, "password_reset", timedelta(minutes=5))

        assert record.purpose == "password_reset"
        assert record.expires_at == clock.now + timedelta(minutes=5)

    def test_unknown_purpose_rejected(self, token_manager, account):
        with pytest.raises(ValidationException):
            token_manager.issue(account.id, "magic_link", 60)

    def test_tokens_are_unique(self, token_manager, account):
        tokens = {
            token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 60).token
            for _ in range(20)
        }

        assert len(tokens) == 20

    def test_new_token_retires_previous_of_same_purpose(self, token_manager, account):
        first = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 3600)
        second = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 3600)

        with pytest.raises(InvalidVerificationTokenException):
            token_manager.redeem(first.token, TokenPurpose.PASSWORD_RESET)
        assert token_manager.redeem(second.token, TokenPurpose.PASSWORD_RESET) == account.id

    def test_new_token_keeps_other_purposes(self, token_manager, account):
        verification = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 3600)
        token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 3600)

        assert token_manager.redeem(verification.token, TokenPurpose.EMAIL_VERIFICATION) == (
            account.id
        )

    def test_only_newest_token_is_active(self, token_manager, account):
        for _ in range(3):
            newest = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 3600)

        active = token_manager.find_active(account.id, TokenPurpose.PASSWORD_RESET)

        assert [t.token for t in active] == [newest.token]

    def test_schema_rejects_second_active_token(self, session_factory, clock, account):
        def add_active(db, token):
            db.add(
                VerificationToken(
                    account_id=account.id,
                    token=token,
                    purpose="password_reset",
                    expires_at=clock.now + timedelta(hours=1),
                )
            )

        with pytest.raises(DuplicateRecordException):
            with session_scope(session_factory) as db:
                add_active(db, "a" * 32)
                db.flush()
                add_active(db, "b" * 32)
                db.flush()

    def test_ownerless_tokens(self, token_manager):
        first = token_manager.issue(None, TokenPurpose.EMAIL_VERIFICATION, 60)
        second = token_manager.issue(None, TokenPurpose.EMAIL_VERIFICATION, 60)

        assert token_manager.redeem(first.token, TokenPurpose.EMAIL_VERIFICATION) is None
        assert token_manager.redeem(second.token, TokenPurpose.EMAIL_VERIFICATION) is None


class TestRedeem:
    """Test single-use redemption."""

    def test_redeem_once(self, token_manager, account):
        record = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 86400)

        assert token_manager.redeem(record.token, TokenPurpose.EMAIL_VERIFICATION) == account.id

    def test_second_redemption_fails(self, token_manager, account):
        record = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 86400)
        token_manager.redeem(record.token, TokenPurpose.EMAIL_VERIFICATION)

        with pytest.raises(InvalidVerificationTokenException):
            token_manager.redeem(record.token, TokenPurpose.EMAIL_VERIFICATION)

    def test_expired_token_fails_even_if_never_redeemed(self, token_manager, clock, account):
        record = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 60)
        clock.advance(seconds=61)

        with pytest.raises(InvalidVerificationTokenException):
            token_manager.redeem(record.token, TokenPurpose.PASSWORD_RESET)

    def test_token_expires_exactly_at_expiry(self, token_manager, clock, account):
        record = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 60)
        clock.advance(seconds=60)

        with pytest.raises(InvalidVerificationTokenException):
            token_manager.redeem(record.token, TokenPurpose.PASSWORD_RESET)

    def test_wrong_purpose_fails(self, token_manager, account):
        record = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 86400)

        with pytest.raises(InvalidVerificationTokenException):
            token_manager.redeem(record.token, TokenPurpose.PASSWORD_RESET)
        # still redeemable for its own purpose
        assert token_manager.redeem(record.token, TokenPurpose.EMAIL_VERIFICATION) == account.id

    def test_failures_are_indistinguishable(self, token_manager, clock, account):
        used = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 86400)
        token_manager.redeem(used.token, TokenPurpose.EMAIL_VERIFICATION)
        expired = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 1)
        clock.advance(seconds=5)

        messages = set()
        for token, purpose in [
            ("doesnotexist" * 3, TokenPurpose.EMAIL_VERIFICATION),
            (used.token, TokenPurpose.EMAIL_VERIFICATION),
            (expired.token, TokenPurpose.PASSWORD_RESET),
        ]:
            with pytest.raises(InvalidVerificationTokenException) as exc_info:
                token_manager.redeem(token, purpose)
            messages.add((str(exc_info.value), exc_info.value.reason))

        assert len(messages) == 1

    def test_redeem_joins_caller_transaction(self, token_manager, session_factory, account):
        record = token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 3600)

        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as db:
                token_manager.redeem(record.token, TokenPurpose.PASSWORD_RESET, db=db)
                raise RuntimeError("later step failed")

        # rolled back with the caller, so still redeemable
        assert token_manager.redeem(record.token, TokenPurpose.PASSWORD_RESET) == account.id

    def test_concurrent_redeemers_single_winner(self, token_manager, account):
        record = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 3600)
        workers = 8
        barrier = threading.Barrier(workers)
        outcomes = []
        lock = threading.Lock()

        def redeem():
            barrier.wait(timeout=10)
            try:
                token_manager.redeem(record.token, TokenPurpose.EMAIL_VERIFICATION)
                result = "redeemed"
            except InvalidVerificationTokenException:
                result = "rejected"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=redeem) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert outcomes.count("redeemed") == 1
        assert outcomes.count("rejected") == workers - 1


class TestPurgeExpired:
    """Test garbage collection of expired tokens."""

    def test_purges_expired_regardless_of_redemption(
        self, token_manager, session_factory, clock, account, create_account
    ):
        other = create_account(email="bob@acme.io", username="bob")
        redeemed = token_manager.issue(account.id, TokenPurpose.EMAIL_VERIFICATION, 60)
        token_manager.redeem(redeemed.token, TokenPurpose.EMAIL_VERIFICATION)
        token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 60)
        keeper = token_manager.issue(other.id, TokenPurpose.PASSWORD_RESET, 7200)

        clock.advance(seconds=120)
        removed = token_manager.purge_expired()

        assert removed == 2
        with session_scope(session_factory) as db:
            remaining = db.scalars(select(VerificationToken.token)).all()
        assert remaining == [keeper.token]

    def test_purge_is_idempotent(self, token_manager, clock, account):
        token_manager.issue(account.id, TokenPurpose.PASSWORD_RESET, 60)
        clock.advance(seconds=61)

        assert token_manager.purge_expired() == 1
        assert token_manager.purge_expired() == 0
