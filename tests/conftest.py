"""Pytest fixtures for the acmednschallenge test suite."""

import logging
import logging.handlers
import os
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from acmednschallenge.crypto import PrivateKey, generate_rsa_key, private_key_to_pem
from acmednschallenge.models import CertificateRecord

# Default URLs for local pebble setup
PEBBLE_DIRECTORY_URL = os.environ.get("PEBBLE_DIRECTORY_URL", "https://localhost:14000/dir")


@pytest.fixture(scope="session")
def pebble_directory_url() -> str:
    """Return the Pebble ACME directory URL."""
    return PEBBLE_DIRECTORY_URL


@pytest.fixture(scope="session")
def rsa_key() -> PrivateKey:
    """One RSA key shared by the session; generating keys is slow."""
    return generate_rsa_key(2048)


def build_certificate_pem(
    key: PrivateKey,
    names: list[str],
    not_after: datetime,
    not_before: datetime | None = None,
) -> bytes:
    """Build a self-signed PEM certificate for ``names``."""
    not_before = not_before or min(not_after, datetime.now(timezone.utc)) - timedelta(days=90)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def make_record(rsa_key: PrivateKey) -> Callable[..., CertificateRecord]:
    """Factory for certificate records expiring at a given time.

    Usage:
        record = make_record("example.org", expires_in=timedelta(days=5))
    """

    def _make(
        domain: str = "example.org",
        expires_in: timedelta = timedelta(days=60),
        names: list[str] | None = None,
        not_after: datetime | None = None,
    ) -> CertificateRecord:
        # Certificates carry whole seconds
        not_after = not_after or datetime.now(timezone.utc).replace(microsecond=0) + expires_in
        return CertificateRecord(
            domain=domain,
            certificate_pem=build_certificate_pem(rsa_key, names or [domain], not_after),
            private_key_pem=private_key_to_pem(rsa_key),
        )

    return _make


class LogCapture:
    """Helper class to capture and inspect log records."""

    def __init__(self, handler: logging.handlers.MemoryHandler) -> None:
        self._handler = handler

    @property
    def records(self) -> list[logging.LogRecord]:
        """Get all captured log records."""
        return self._handler.buffer

    def get_records(
        self, level: int | None = None, name: str | None = None
    ) -> list[logging.LogRecord]:
        """Get log records filtered by level and/or logger name prefix."""
        records = self.records
        if level is not None:
            records = [r for r in records if r.levelno == level]
        if name is not None:
            records = [r for r in records if r.name.startswith(name)]
        return records

    def get_messages(self, level: int | None = None, name: str | None = None) -> list[str]:
        """Get log messages filtered by level and/or logger name prefix."""
        return [r.getMessage() for r in self.get_records(level, name)]

    def clear(self) -> None:
        """Clear all captured log records."""
        self._handler.buffer.clear()


@pytest.fixture
def log_capture() -> Generator[LogCapture]:
    """Capture logs from the acmednschallenge package during a test.

    Usage:
        def test_something(log_capture):
            # do something that logs
            assert "Certificate saved" in log_capture.get_messages(logging.INFO)
    """
    handler = logging.handlers.MemoryHandler(capacity=1000)
    handler.setLevel(logging.DEBUG)

    package_logger = logging.getLogger("acmednschallenge")
    original_level = package_logger.level
    package_logger.setLevel(logging.DEBUG)
    package_logger.addHandler(handler)

    try:
        yield LogCapture(handler)
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(original_level)
        handler.close()
