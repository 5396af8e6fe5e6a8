"""acmednschallenge - DNS-01 challenge responder and certificate lifecycle manager."""

from acmednschallenge.lifecycle import CertificateLifecycleManager
from acmednschallenge.registry import ChallengeRegistry
from acmednschallenge.responder import DnsResponder

__all__ = ["CertificateLifecycleManager", "ChallengeRegistry", "DnsResponder"]
__version__ = "0.1.0"
