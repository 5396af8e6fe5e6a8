"""DNS-01 challenge providers."""

from acmednschallenge.providers.base import ChallengeProvider
from acmednschallenge.providers.registry import RegistryProvider

__all__ = ["ChallengeProvider", "RegistryProvider"]
