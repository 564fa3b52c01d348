"""OAuth federation: providers, profile normalization, state and callback handling."""

from .client import OAuthClient
from .connections import ConnectionRepository
from .federator import OAuthFederator
from .normalizers import (
    GitHubProfileNormalizer,
    GoogleProfileNormalizer,
    ProfileNormalizer,
    normalizer_for,
)
from .providers import ProviderRegistry
from .state import OAuthStateSigner, RedirectPolicy

__all__ = [
    "ConnectionRepository",
    "GitHubProfileNormalizer",
    "GoogleProfileNormalizer",
    "OAuthClient",
    "OAuthFederator",
    "OAuthStateSigner",
    "ProfileNormalizer",
    "ProviderRegistry",
    "RedirectPolicy",
    "normalizer_for",
]
