"""Certificate issuance: the seam between lifecycle management and ACME."""

import os
from abc import ABC, abstractmethod
from pathlib import Path

from acmednschallenge._logging import get_logger
from acmednschallenge.client import AcmeClient
from acmednschallenge.crypto import (
    PrivateKey,
    generate_ecdsa_key,
    load_private_key,
    private_key_to_pem,
)
from acmednschallenge.models import CertificateRecord, CertificateResult, ManagedDomain
from acmednschallenge.propagation import PropagationChecker
from acmednschallenge.providers.base import ChallengeProvider

logger = get_logger(__name__)


class CertificateIssuer(ABC):
    """Obtains and renews certificates for managed domains."""

    @abstractmethod
    def obtain(self, domain: ManagedDomain) -> CertificateRecord:
        """Issue a brand-new certificate with a fresh key.

        Raises:
            Exception: If issuance fails for any reason.
        """
        ...

    @abstractmethod
    def renew(self, record: CertificateRecord, domain: ManagedDomain) -> CertificateRecord:
        """Issue a successor for an existing certificate.

        Raises:
            Exception: If renewal fails for any reason.
        """
        ...


def load_or_create_account_key(data_path: str | Path, email: str) -> PrivateKey:
    """Load the ACME account key for ``email``, generating it on first use.

    The key lives at ``<data_path>/users/<email>/key.pem`` with mode 0600.
    """
    key_file = Path(data_path) / "users" / email / "key.pem"
    if key_file.exists():
        key = load_private_key(key_file.read_bytes())
        logger.info("Loaded ACME account key", extra={"path": str(key_file)})
        return key

    key_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    key = generate_ecdsa_key()
    fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(private_key_to_pem(key))
    logger.info("Created ACME account key", extra={"path": str(key_file)})
    return key


class AcmeIssuer(CertificateIssuer):
    """Issue certificates through an ACME CA using DNS-01.

    A new AcmeClient is created (and the account registered or looked
    up) for every operation, so concurrent domains never share nonces.

    Args:
        directory_url: ACME directory of the CA.
        account_key: ACME account key.
        email: Account contact.
        challenge_provider: Publishes DNS-01 TXT values.
        terms_of_service_agreed: Whether the CA's terms are accepted.
        verify: TLS verification for the CA.
        propagation: Optional propagation checker.
    """

    def __init__(
        self,
        directory_url: str,
        account_key: PrivateKey,
        email: str,
        challenge_provider: ChallengeProvider,
        terms_of_service_agreed: bool = True,
        verify: bool = True,
        propagation: PropagationChecker | None = None,
    ):
        self.directory_url = directory_url
        self.account_key = account_key
        self.email = email
        self.challenge_provider = challenge_provider
        self.terms_of_service_agreed = terms_of_service_agreed
        self.verify = verify
        self.propagation = propagation

    def _client(self) -> AcmeClient:
        client = AcmeClient(
            self.directory_url,
            self.account_key,
            self.challenge_provider,
            verify=self.verify,
            propagation=self.propagation,
        )
        try:
            client.register_account(self.email, self.terms_of_service_agreed)
        except BaseException:
            client.close()
            raise
        return client

    def obtain(self, domain: ManagedDomain) -> CertificateRecord:
        with self._client() as client:
            result = client.obtain_certificate(domain.names)
        return _to_record(domain.name, result)

    def renew(self, record: CertificateRecord, domain: ManagedDomain) -> CertificateRecord:
        """Renew with the names of the stored certificate and its key."""
        key = load_private_key(record.private_key_pem)
        names = record.names
        if domain.name in names:
            names = [domain.name] + [n for n in names if n != domain.name]
        with self._client() as client:
            result = client.obtain_certificate(names, private_key=key)
        return _to_record(domain.name, result)


def _to_record(domain: str, result: CertificateResult) -> CertificateRecord:
    return CertificateRecord(
        domain=domain,
        certificate_pem=result.certificate_pem.encode(),
        private_key_pem=result.private_key_pem.encode(),
    )
