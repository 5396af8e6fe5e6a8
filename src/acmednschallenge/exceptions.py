"""Exceptions raised by acmednschallenge."""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any


class AcmeError(Exception):
    """Base exception for ACME protocol errors.

    Represents errors returned by the ACME server in the standard
    problem document format (RFC 7807).
    """

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        subproblems: list[dict[str, Any]] | None = None,
        retry_after: int | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.subproblems = subproblems
        self.retry_after = retry_after
        super().__init__(f"{type}: {detail}")

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        headers: dict[str, str] | None = None,
    ) -> "AcmeError":
        """Create an AcmeError from a JSON problem document.

        Routes to the matching subclass based on the error type.

        Args:
            data: Parsed JSON error response.
            status_code: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            AcmeError instance (or appropriate subclass).
        """
        retry_after = None
        if headers:
            retry_after = _parse_retry_after(headers.get("Retry-After") or headers.get("retry-after"))

        error_type = data.get("type", "unknown")
        error_cls = _ERROR_TYPES.get(error_type, cls)
        return error_cls(
            type=error_type,
            detail=data.get("detail", "Unknown error"),
            status_code=status_code,
            subproblems=data.get("subproblems"),
            retry_after=retry_after,
        )


def _parse_retry_after(value: str | None) -> int | None:
    """Parse a Retry-After header (seconds or HTTP-date)."""
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        return max(0, int((dt - datetime.now(timezone.utc)).total_seconds()))


class ChallengeError(AcmeError):
    """Challenge was rejected or never reached a final state."""

    pass


class OrderError(AcmeError):
    """Order became invalid or never reached a final state."""

    pass


class RateLimitError(AcmeError):
    """Rate limit exceeded (urn:ietf:params:acme:error:rateLimited)."""

    pass


class DnsValidationError(AcmeError):
    """DNS validation failed (urn:ietf:params:acme:error:dns)."""

    pass


class CAAError(AcmeError):
    """CAA record forbids issuance (urn:ietf:params:acme:error:caa)."""

    pass


class ServerInternalError(AcmeError):
    """ACME server internal error (urn:ietf:params:acme:error:serverInternal)."""

    pass


class BadNonceError(AcmeError):
    """Bad nonce error (urn:ietf:params:acme:error:badNonce)."""

    pass


_ERROR_TYPES: dict[str, type[AcmeError]] = {
    "urn:ietf:params:acme:error:rateLimited": RateLimitError,
    "urn:ietf:params:acme:error:dns": DnsValidationError,
    "urn:ietf:params:acme:error:caa": CAAError,
    "urn:ietf:params:acme:error:serverInternal": ServerInternalError,
    "urn:ietf:params:acme:error:badNonce": BadNonceError,
}


class ConfigError(ValueError):
    """Invalid or incomplete configuration. Fatal at startup."""

    pass


class CertificateStoreError(Exception):
    """Writing a certificate record to disk failed."""

    def __init__(self, domain: str, reason: str):
        self.domain = domain
        self.reason = reason
        super().__init__(f"cannot store certificate for {domain}: {reason}")
