"""ACME client for obtaining certificates through DNS-01 challenges."""

import json
import time
from typing import TypeVar

import httpx
from cryptography.hazmat.primitives import serialization
from pydantic import BaseModel

from acmednschallenge._logging import Timer, get_logger
from acmednschallenge.challenges.dns01 import (
    challenge_fqdn,
    compute_dns_txt_value,
    compute_key_authorization,
)
from acmednschallenge.crypto import (
    PrivateKey,
    base64url_encode,
    create_csr,
    generate_rsa_key,
    key_thumbprint,
    private_key_to_pem,
    sign_jws,
)
from acmednschallenge.exceptions import AcmeError, BadNonceError, ChallengeError, OrderError
from acmednschallenge.models import (
    Account,
    Authorization,
    AuthorizationStatus,
    CertificateResult,
    Challenge,
    ChallengeStatus,
    Directory,
    Order,
    OrderStatus,
)
from acmednschallenge.propagation import PropagationChecker
from acmednschallenge.providers.base import ChallengeProvider

logger = get_logger(__name__)

LETS_ENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

_M = TypeVar("_M", bound=BaseModel)


class AcmeClient:
    """ACME (RFC 8555) client that validates domains via DNS-01.

    Challenge records are published and removed through a
    ChallengeProvider; the client itself never touches DNS except for the
    optional propagation check.

    Args:
        directory_url: URL of the ACME directory endpoint.
        account_key: Private key for the ACME account.
        challenge_provider: Publishes DNS-01 TXT values.
        verify: TLS verification for the CA (False disables it).
        propagation: Checker run after all challenges are presented;
            None skips the check.
    """

    # Polling configuration
    POLL_INTERVAL = 2  # seconds
    MAX_POLL_ATTEMPTS = 30  # 60 seconds total
    MAX_NONCE_RETRIES = 3

    def __init__(
        self,
        directory_url: str,
        account_key: PrivateKey,
        challenge_provider: ChallengeProvider,
        verify: bool = True,
        propagation: PropagationChecker | None = None,
    ):
        self.directory_url = directory_url
        self.account_key = account_key
        self.challenge_provider = challenge_provider
        self.propagation = propagation
        self._http = httpx.Client(verify=verify, timeout=30)

        # Cached state
        self._directory: Directory | None = None
        self._nonce: str | None = None
        self._account_url: str | None = None

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()

    def __enter__(self) -> "AcmeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def directory(self) -> Directory:
        """Get the ACME directory (cached after first fetch)."""
        if self._directory is None:
            response = self._http.get(self.directory_url)
            response.raise_for_status()
            self._directory = Directory.model_validate(response.json())
        return self._directory

    @property
    def account_url(self) -> str | None:
        """Get the account URL (set after registration)."""
        return self._account_url

    def _get_nonce(self) -> str:
        if self._nonce:
            nonce, self._nonce = self._nonce, None
            return nonce

        response = self._http.head(self.directory.new_nonce)
        response.raise_for_status()
        return response.headers["Replay-Nonce"]

    def _signed_request(self, url: str, payload: dict | str, use_kid: bool = True) -> httpx.Response:
        """Make a JWS-signed POST request to the ACME server.

        Args:
            url: The endpoint URL.
            payload: The request payload (dict for JSON, "" for POST-as-GET).
            use_kid: Identify by account URL; False embeds the JWK instead
                (new account registration).

        Raises:
            AcmeError: If the ACME server returns an error.
        """
        for attempt in range(self.MAX_NONCE_RETRIES + 1):
            body = sign_jws(
                key=self.account_key,
                payload=payload,
                url=url,
                nonce=self._get_nonce(),
                kid=self._account_url if use_kid else None,
            )
            response = self._http.post(
                url,
                json=body,
                headers={"Content-Type": "application/jose+json"},
            )
            if "Replay-Nonce" in response.headers:
                self._nonce = response.headers["Replay-Nonce"]

            if response.status_code < 400:
                return response

            try:
                error = AcmeError.from_response(
                    response.json(), response.status_code, headers=dict(response.headers)
                )
            except json.JSONDecodeError:
                raise AcmeError(
                    type="unknown",
                    detail=response.text,
                    status_code=response.status_code,
                ) from None

            if isinstance(error, BadNonceError) and attempt < self.MAX_NONCE_RETRIES:
                logger.debug("Retrying after bad nonce", extra={"url": url, "attempt": attempt + 1})
                self._nonce = None
                continue
            raise error

        raise AssertionError("unreachable")

    def _post_as_get(self, url: str, model: type[_M]) -> _M:
        return model.model_validate(self._signed_request(url, "").json())

    def register_account(self, email: str | None = None, terms_of_service_agreed: bool = True) -> Account:
        """Register a new account, or find the existing one for this key.

        Args:
            email: Contact email address (optional).
            terms_of_service_agreed: Whether the CA's terms are accepted.

        Returns:
            The Account resource.
        """
        payload: dict = {"termsOfServiceAgreed": terms_of_service_agreed}
        if email:
            payload["contact"] = [f"mailto:{email}"]

        response = self._signed_request(self.directory.new_account, payload, use_kid=False)
        self._account_url = response.headers.get("Location")
        logger.debug("Account registered", extra={"account_url": self._account_url})
        return Account.model_validate(response.json())

    def create_order(self, domains: list[str]) -> tuple[Order, str]:
        """Create a new certificate order.

        Returns:
            The Order resource and its URL.
        """
        payload = {"identifiers": [{"type": "dns", "value": domain} for domain in domains]}
        response = self._signed_request(self.directory.new_order, payload)
        order_url = response.headers.get("Location")
        if not order_url:
            raise OrderError(
                type="urn:ietf:params:acme:error:malformed",
                detail="Order response has no Location header",
                status_code=response.status_code,
            )
        return Order.model_validate(response.json()), order_url

    def fetch_authorizations(self, order: Order) -> list[Authorization]:
        """Fetch all authorizations for an order."""
        return [self._post_as_get(url, Authorization) for url in order.authorizations]

    def solve_authorizations(self, authorizations: list[Authorization]) -> None:
        """Validate every pending authorization through DNS-01.

        All TXT values are presented first, then (optionally) checked for
        propagation, then each challenge is triggered and polled. Every
        presented value is cleaned up afterwards, whatever the outcome.

        Raises:
            ChallengeError: If a challenge is missing, invalid or times out.
        """
        thumbprint = key_thumbprint(self.account_key)
        pending: list[tuple[str, Challenge, str]] = []

        try:
            for authz in authorizations:
                if authz.status == AuthorizationStatus.VALID:
                    continue
                challenge = _dns01_challenge(authz)
                domain = authz.identifier.value
                key_authorization = compute_key_authorization(challenge.token or "", thumbprint)
                self.challenge_provider.present(domain, challenge.token or "", key_authorization)
                pending.append((domain, challenge, key_authorization))

            if self.propagation is not None:
                for domain, _, key_authorization in pending:
                    fqdn = challenge_fqdn(domain)
                    if not self.propagation.wait_for(fqdn, compute_dns_txt_value(key_authorization)):
                        logger.warning(
                            "TXT record not visible before timeout",
                            extra={"domain": domain, "fqdn": fqdn},
                        )

            for domain, challenge, _ in pending:
                self._signed_request(challenge.url, {})
                self._poll_challenge(challenge.url)
                logger.info("Challenge validated", extra={"domain": domain})
        finally:
            for domain, challenge, key_authorization in pending:
                try:
                    self.challenge_provider.cleanup(domain, challenge.token or "", key_authorization)
                except Exception:
                    logger.exception("Challenge cleanup failed", extra={"domain": domain})

    def _poll_challenge(self, challenge_url: str) -> Challenge:
        """Poll a challenge until it's valid or invalid."""
        for _ in range(self.MAX_POLL_ATTEMPTS):
            challenge = self._post_as_get(challenge_url, Challenge)
            if challenge.status == ChallengeStatus.VALID:
                return challenge
            if challenge.status == ChallengeStatus.INVALID:
                detail = (challenge.error or {}).get("detail", "Challenge validation failed")
                raise ChallengeError(
                    type=(challenge.error or {}).get("type", "urn:ietf:params:acme:error:unauthorized"),
                    detail=detail,
                    status_code=403,
                )
            time.sleep(self.POLL_INTERVAL)

        raise ChallengeError(
            type="urn:ietf:params:acme:error:serverInternal",
            detail="Challenge polling timed out",
            status_code=500,
        )

    def _poll_order(self, order_url: str, done: set[OrderStatus]) -> Order:
        """Poll an order until its status is in ``done``."""
        for _ in range(self.MAX_POLL_ATTEMPTS):
            order = self._post_as_get(order_url, Order)
            if order.status in done:
                return order
            if order.status == OrderStatus.INVALID:
                raise OrderError(
                    type="urn:ietf:params:acme:error:orderNotReady",
                    detail=(order.error or {}).get("detail", "Order is invalid"),
                    status_code=403,
                )
            time.sleep(self.POLL_INTERVAL)

        raise OrderError(
            type="urn:ietf:params:acme:error:serverInternal",
            detail="Order polling timed out",
            status_code=500,
        )

    def finalize_order(self, order: Order, csr_der: bytes) -> Order:
        """Finalize an order by submitting a DER-encoded CSR."""
        response = self._signed_request(order.finalize, {"csr": base64url_encode(csr_der)})
        return Order.model_validate(response.json())

    def download_certificate(self, order: Order) -> str:
        """Download the PEM certificate chain of a valid order.

        Raises:
            ValueError: If order has no certificate URL.
        """
        if not order.certificate:
            raise ValueError("Order has no certificate URL")
        return self._signed_request(order.certificate, "").text

    def obtain_certificate(
        self,
        domains: list[str],
        private_key: PrivateKey | None = None,
    ) -> CertificateResult:
        """Obtain a certificate for the given domains.

        Creates an order, validates all authorizations, finalizes with a
        CSR signed by ``private_key`` (a fresh RSA-2048 key if None) and
        downloads the full chain.

        Args:
            domains: Names for the certificate; the first becomes the CN.
            private_key: Key to certify, e.g. the key of a certificate
                being renewed.

        Returns:
            CertificateResult with the chain and the private key PEM.
        """
        with Timer() as timer:
            if private_key is None:
                private_key = generate_rsa_key(2048)
            csr = create_csr(private_key, domains)

            order, order_url = self.create_order(domains)
            self.solve_authorizations(self.fetch_authorizations(order))

            order = self._poll_order(order_url, {OrderStatus.READY, OrderStatus.VALID})
            if order.status == OrderStatus.READY:
                self.finalize_order(order, csr.public_bytes(serialization.Encoding.DER))
                order = self._poll_order(order_url, {OrderStatus.VALID})

            certificate_pem = self.download_certificate(order)

        logger.info(
            "Certificate issued",
            extra={"domains": domains, "duration_ms": round(timer.elapsed_ms)},
        )
        return CertificateResult(
            certificate_pem=certificate_pem,
            private_key_pem=private_key_to_pem(private_key).decode(),
            domains=domains,
        )


def _dns01_challenge(authz: Authorization) -> Challenge:
    for challenge in authz.challenges:
        if challenge.type == "dns-01":
            return challenge
    raise ChallengeError(
        type="urn:ietf:params:acme:error:unsupportedIdentifier",
        detail=f"No dns-01 challenge offered for {authz.identifier.value}",
        status_code=400,
    )
