"""Challenge provider backed by the in-process challenge registry."""

from acmednschallenge._logging import get_logger
from acmednschallenge.challenges.dns01 import challenge_fqdn, compute_dns_txt_value
from acmednschallenge.providers.base import ChallengeProvider
from acmednschallenge.registry import ChallengeRegistry

logger = get_logger(__name__)


class RegistryProvider(ChallengeProvider):
    """Publish DNS-01 values by writing them into a ChallengeRegistry.

    The DNS responder serving from the same registry answers for the
    record as soon as ``present`` returns, so no propagation delay is
    introduced by this provider.

    Args:
        registry: Registry shared with the DNS responder.
    """

    def __init__(self, registry: ChallengeRegistry):
        self.registry = registry

    def present(self, domain: str, token: str, key_authorization: str) -> None:
        """Add the TXT value for this challenge to the registry."""
        fqdn = challenge_fqdn(domain)
        value = compute_dns_txt_value(key_authorization)
        self.registry.put(fqdn, value)
        logger.info("TXT record added", extra={"domain": domain, "fqdn": fqdn, "value": value})

    def cleanup(self, domain: str, token: str, key_authorization: str) -> None:
        """Remove every TXT value published under this challenge name."""
        fqdn = challenge_fqdn(domain)
        self.registry.clear(fqdn)
        logger.info("TXT record removed", extra={"domain": domain, "fqdn": fqdn})
