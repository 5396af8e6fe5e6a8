"""Abstract base class for DNS-01 challenge providers."""

from abc import ABC, abstractmethod


class ChallengeProvider(ABC):
    """Abstract interface the ACME client uses to publish DNS-01 values.

    Providers are responsible for making the TXT record for a challenge
    visible (``present``) and for removing it once the authorization
    has been decided (``cleanup``). Both calls are synchronous.
    """

    @abstractmethod
    def present(self, domain: str, token: str, key_authorization: str) -> None:
        """Publish the TXT record for a challenge.

        Must return only once the record is being served.

        Args:
            domain: The domain being validated (without _acme-challenge prefix).
            token: The challenge token from the ACME server.
            key_authorization: The key authorization (token.thumbprint).

        Raises:
            Exception: If the record cannot be published.
        """
        ...

    @abstractmethod
    def cleanup(self, domain: str, token: str, key_authorization: str) -> None:
        """Remove the TXT record for a challenge.

        Calling this when nothing is published is not an error.

        Args:
            domain: The domain being validated (without _acme-challenge prefix).
            token: The challenge token from the ACME server.
            key_authorization: The key authorization (token.thumbprint).
        """
        ...
