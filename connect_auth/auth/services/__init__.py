"""Direct-credential identity services."""

from .authentication import PASSWORD_RESET_ACKNOWLEDGEMENT, AuthenticationService
from .delivery import LoggingTokenDelivery, TokenDelivery
from .password_service import PasswordHasher, PasswordService, PasswordValidator
from .registration import VERIFICATION_ACKNOWLEDGEMENT, RegistrationService
from .verification_tokens import VerificationTokenManager

__all__ = [
    "PASSWORD_RESET_ACKNOWLEDGEMENT",
    "VERIFICATION_ACKNOWLEDGEMENT",
    "AuthenticationService",
    "LoggingTokenDelivery",
    "PasswordHasher",
    "PasswordService",
    "PasswordValidator",
    "RegistrationService",
    "TokenDelivery",
    "VerificationTokenManager",
]
