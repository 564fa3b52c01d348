"""
Password management service.

Handles Argon2id password hashing, verification, strength checking,
and password-related operations.
"""

import logging
import re
import secrets

from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from ...exceptions import InternalException, ValidationException

logger = logging.getLogger(__name__)


class PasswordHasher:
    """Argon2id password hashing utility."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        """Initialize with Argon2 cost parameters (memory_cost is in KiB)."""
        self._argon2 = Argon2Hasher(
            time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism
        )

    def hash(self, password: str) -> str:
        """Hash a password; the result embeds algorithm parameters and a fresh salt."""
        return str(self._argon2.hash(password))

    def verify(self, password: str, password_hash: str) -> bool:
        """
        Verify a password against its hash in constant time.

        Returns False on a normal mismatch.

        Raises:
            InternalException: If the stored hash cannot be parsed
        """
        try:
            return bool(self._argon2.verify(password_hash, password))
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError, ValueError) as e:
            logger.error(f"Stored password hash is unusable: {type(e).__name__}")
            raise InternalException("Stored password hash is malformed") from e

    def needs_rehash(self, password_hash: str) -> bool:
        """Check if a hash was made with different parameters than the current ones."""
        try:
            return bool(self._argon2.check_needs_rehash(password_hash))
        except (InvalidHashError, ValueError):
            return True


class PasswordValidator:
    """Password strength validator."""

    MIN_LENGTH = 8
    MAX_LENGTH = 128

    COMMON_PASSWORDS = {
        "password",
        "password1!",
        "password123!",
        "qwerty123!",
        "welcome1!",
        "letmein1!",
        "admin123!",
    }

    @classmethod
    def validate(cls, password: str) -> tuple[bool, list[str]]:
        """
        Validate password strength.

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        # Length check
        if len(password) < cls.MIN_LENGTH:
            errors.append(f"Password must be at least {cls.MIN_LENGTH} characters long")
        if len(password) > cls.MAX_LENGTH:
            errors.append(f"Password must not exceed {cls.MAX_LENGTH} characters")

        # Complexity checks
        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
        if not re.search(r"\d", password):
            errors.append("Password must contain at least one number")
        if not re.search(r"[!@#$%^&*(),.?:{}|<>]", password):
            errors.append("Password must contain at least one special character")

        # Common password check
        if password.lower() in cls.COMMON_PASSWORDS:
            errors.append("Password is too common")

        return len(errors) == 0, errors


class PasswordService:
    """Password management service."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self.hasher = hasher or PasswordHasher()
        self.validator = PasswordValidator()
        # Real hash of a throwaway secret so unknown-account logins cost the same as real ones
        self._dummy_hash = self.hasher.hash(secrets.token_urlsafe(24))

    def hash_password(self, password: str) -> str:
        """Hash a password."""
        return self.hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against its hash."""
        return self.hasher.verify(password, password_hash)

    def verify_dummy(self, password: str) -> None:
        """Spend the same effort as a real verification without an account."""
        self.hasher.verify(password, self._dummy_hash)

    def validate_password(self, password: str) -> tuple[bool, list[str]]:
        """Validate password strength."""
        return self.validator.validate(password)

    def ensure_strong(self, password: str) -> None:
        """Raise ValidationException listing every strength problem."""
        is_valid, errors = self.validate_password(password)
        if not is_valid:
            raise ValidationException(f"Invalid password: {'; '.join(errors)}", errors)

    def needs_rehash(self, password_hash: str) -> bool:
        """Check if password needs rehashing."""
        return self.hasher.needs_rehash(password_hash)

    @staticmethod
    def generate_unusable_password(length: int = 32) -> str:
        """Random password for accounts that only sign in through a provider."""
        return secrets.token_urlsafe(length)[:length]
