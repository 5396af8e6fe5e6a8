"""Pydantic models for ACME resources and managed certificates."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from cryptography import x509
from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# ACME Protocol Enums (RFC 8555)
# =============================================================================


class ChallengeStatus(StrEnum):
    """Challenge statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    """Authorization statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(StrEnum):
    """Order statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AccountStatus(StrEnum):
    """Account statuses (RFC 8555 Section 7.1.6)."""

    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


# =============================================================================
# ACME Resources
# =============================================================================


class Directory(BaseModel):
    """ACME directory resource (RFC 8555 Section 7.1.1)."""

    new_nonce: str = Field(alias="newNonce")
    new_account: str = Field(alias="newAccount")
    new_order: str = Field(alias="newOrder")
    meta: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class Account(BaseModel):
    """ACME account resource (RFC 8555 Section 7.1.2)."""

    status: AccountStatus
    contact: list[str] | None = None
    orders: str | None = None


class Identifier(BaseModel):
    """ACME identifier (RFC 8555 Section 7.1.3)."""

    type: str
    value: str


class Challenge(BaseModel):
    """ACME challenge resource (RFC 8555 Section 7.5.1).

    The type stays a plain string: servers may offer challenge types
    this client never uses.
    """

    type: str
    url: str
    status: ChallengeStatus
    token: str | None = None
    error: dict[str, Any] | None = None


class Authorization(BaseModel):
    """ACME authorization resource (RFC 8555 Section 7.1.4)."""

    status: AuthorizationStatus
    identifier: Identifier
    challenges: list[Challenge]
    expires: datetime | None = None
    wildcard: bool | None = None


class Order(BaseModel):
    """ACME order resource (RFC 8555 Section 7.1.3)."""

    status: OrderStatus
    identifiers: list[Identifier]
    authorizations: list[str]
    finalize: str
    expires: datetime | None = None
    certificate: str | None = None
    error: dict[str, Any] | None = None


class CertificateResult(BaseModel):
    """Result of certificate issuance."""

    certificate_pem: str
    private_key_pem: str
    domains: list[str]


# =============================================================================
# Managed certificates
# =============================================================================


class ManagedDomain(BaseModel):
    """A primary domain plus additional subject alternative names."""

    model_config = ConfigDict(frozen=True)

    name: str
    additional_sans: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        value = value.strip().rstrip(".").lower()
        if not value:
            raise ValueError("domain name must not be empty")
        return value

    @field_validator("additional_sans")
    @classmethod
    def _normalize_sans(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(san.strip().rstrip(".").lower() for san in value if san.strip())

    @property
    def names(self) -> list[str]:
        """All names the certificate must cover, primary name first."""
        names = [self.name]
        names.extend(san for san in self.additional_sans if san != self.name)
        return names


class RenewalPolicy(BaseModel):
    """Renew when fewer than ``renew_before_days`` days remain before expiry."""

    model_config = ConfigDict(frozen=True)

    renew_before_days: int = Field(default=10, ge=1, le=30)


class CertificateRecord(BaseModel):
    """A certificate chain and its private key for one managed domain.

    The expiry is always derived from the PEM, never stored separately.
    """

    model_config = ConfigDict(frozen=True)

    domain: str
    certificate_pem: bytes
    private_key_pem: bytes

    @property
    def certificate(self) -> x509.Certificate:
        """The leaf certificate (first block of the chain).

        Raises:
            ValueError: If the chain holds no parseable certificate.
        """
        return x509.load_pem_x509_certificates(self.certificate_pem)[0]

    @property
    def not_after(self) -> datetime:
        """Expiry of the leaf certificate, timezone-aware UTC."""
        return self.certificate.not_valid_after_utc

    @property
    def names(self) -> list[str]:
        """DNS names covered by the leaf certificate."""
        try:
            san = self.certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            return [self.domain]
        return san.value.get_values_for_type(x509.DNSName)


class CertificateMetadata(BaseModel):
    """Sidecar written next to a certificate; must agree with the PEM."""

    domain: str
    names: list[str]
    not_after: datetime


class DomainOutcome(StrEnum):
    """Terminal state of one domain in one lifecycle tick."""

    NOOP = "noop"
    RENEWED = "renewed"
    OBTAINED = "obtained"
    FAILED = "failed"


class DomainResult(BaseModel):
    """Outcome of processing one managed domain."""

    domain: str
    outcome: DomainOutcome
    error: str | None = None
