"""On-disk storage for issued certificates and their private keys."""

import contextlib
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from pydantic import ValidationError

from acmednschallenge._logging import get_logger
from acmednschallenge.crypto import load_private_key, public_key_matches
from acmednschallenge.exceptions import CertificateStoreError
from acmednschallenge.models import CertificateMetadata, CertificateRecord

logger = get_logger(__name__)

CERT_FILE_MODE = 0o644
DIR_MODE = 0o755
KEY_FILE_MODES = (0o600, 0o640, 0o644)


def sanitized_domain(domain: str) -> str:
    """Turn a domain into a safe file name stem.

    ``*`` becomes ``_`` and ``:`` becomes ``-``; internationalized names
    are converted to their ASCII (punycode) form.

    Raises:
        ValueError: If the name cannot be represented safely.
    """
    name = domain.strip().rstrip(".").lower().replace(":", "-").replace("*", "_")
    try:
        name = name.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise ValueError(f"Invalid domain name {domain!r}: {e}") from e
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise ValueError(f"Invalid domain name {domain!r}")
    return name


@dataclass(frozen=True)
class CertificatePaths:
    """Files belonging to one domain's certificate record."""

    certificate: Path
    private_key: Path
    bundle: Path
    metadata: Path


class CertificateStore:
    """Reads and writes certificate records below one directory.

    Per domain ``<name>`` the store keeps:

    - ``<name>.crt``: certificate chain (world-readable)
    - ``<name>.key``: private key (``key_file_mode``)
    - ``<name>.pem``: chain followed by the key (``key_file_mode``)
    - ``<name>.json``: metadata that must agree with the chain

    Every file is written to a temporary file in the same directory and
    renamed into place, so a reader never sees a partially written file.

    Args:
        directory: Directory holding the files; created on first save.
        key_file_mode: Permission bits for files containing the key.
    """

    def __init__(self, directory: str | Path, key_file_mode: int = 0o600):
        if key_file_mode not in KEY_FILE_MODES:
            raise ValueError(f"Unsupported key file mode: {key_file_mode:o}")
        self.directory = Path(directory)
        self.key_file_mode = key_file_mode

    def paths_for(self, domain: str) -> CertificatePaths:
        """Return the file paths used for a domain."""
        stem = sanitized_domain(domain)
        return CertificatePaths(
            certificate=self.directory / f"{stem}.crt",
            private_key=self.directory / f"{stem}.key",
            bundle=self.directory / f"{stem}.pem",
            metadata=self.directory / f"{stem}.json",
        )

    def save(self, record: CertificateRecord) -> CertificatePaths:
        """Persist a record, replacing any previous one for the domain.

        The key is written first and the metadata last; ``load`` checks
        that key, chain and metadata belong together, so an interrupted
        save reads back as "no certificate".

        Raises:
            CertificateStoreError: If the record cannot be written.
        """
        paths = self.paths_for(record.domain)
        try:
            metadata = CertificateMetadata(
                domain=record.domain,
                names=record.names,
                not_after=record.not_after,
            )
        except ValueError as e:
            raise CertificateStoreError(record.domain, f"invalid certificate: {e}") from e

        try:
            self.directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            _atomic_write(paths.private_key, record.private_key_pem, self.key_file_mode)
            _atomic_write(paths.certificate, record.certificate_pem, CERT_FILE_MODE)
            _atomic_write(
                paths.bundle,
                record.certificate_pem + record.private_key_pem,
                self.key_file_mode,
            )
            _atomic_write(paths.metadata, metadata.model_dump_json().encode(), CERT_FILE_MODE)
        except OSError as e:
            raise CertificateStoreError(record.domain, str(e)) from e

        logger.info(
            "Certificate saved",
            extra={"domain": record.domain, "path": str(paths.certificate)},
        )
        return paths

    def load(self, domain: str) -> CertificateRecord | None:
        """Load the record for a domain.

        Returns None when any file is missing or unreadable, when a file's
        permissions differ from what ``save`` writes, when the chain or
        key is not valid PEM, when the key does not belong to the
        certificate, or when the metadata disagrees with the chain.
        """
        try:
            paths = self.paths_for(domain)
        except ValueError as e:
            logger.warning("Certificate rejected", extra={"domain": domain, "reason": str(e)})
            return None

        try:
            certificate_pem = _read_checked(paths.certificate, CERT_FILE_MODE)
            private_key_pem = _read_checked(paths.private_key, self.key_file_mode)
        except FileNotFoundError:
            logger.info("No certificate on file", extra={"domain": domain})
            return None
        except (OSError, _ModeMismatch) as e:
            logger.warning("Certificate rejected", extra={"domain": domain, "reason": str(e)})
            return None

        record = CertificateRecord(
            domain=domain,
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
        )
        reason = self._verify(record, paths)
        if reason:
            logger.warning("Certificate rejected", extra={"domain": domain, "reason": reason})
            return None
        return record

    def _verify(self, record: CertificateRecord, paths: CertificatePaths) -> str | None:
        """Return why a record is unusable, or None if it is sound."""
        try:
            certificate = record.certificate
        except ValueError as e:
            return f"malformed certificate PEM: {e}"
        try:
            key = load_private_key(record.private_key_pem)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            return f"malformed private key PEM: {e}"
        if not public_key_matches(key, certificate):
            return "private key does not match certificate"

        if not paths.metadata.exists():
            return None
        try:
            metadata = CertificateMetadata.model_validate_json(paths.metadata.read_bytes())
        except (OSError, ValidationError) as e:
            return f"unreadable metadata: {e}"
        if metadata.not_after != certificate.not_valid_after_utc:
            return "metadata does not match certificate"
        return None


class _ModeMismatch(Exception):
    pass


def _read_checked(path: Path, expected_mode: int) -> bytes:
    with path.open("rb") as f:
        mode = stat.S_IMODE(os.fstat(f.fileno()).st_mode)
        if mode != expected_mode:
            raise _ModeMismatch(f"{path.name} has mode {mode:o}, expected {expected_mode:o}")
        return f.read()


def _atomic_write(path: Path, data: bytes, mode: int) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
