"""Service configuration, loaded from a YAML file.

Example::

    email: admin@example.org
    accept_terms_of_service: true
    data_path: /var/lib/acmednschallenge
    renew_before_days: 10
    managed_domains:
      - name: example.org
        additional_sans: ["*.example.org"]
    upstream: 1.1.1.1
"""

import ipaddress
import re
from datetime import timedelta
from email.utils import parseaddr
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from acmednschallenge.client import LETS_ENCRYPT_PRODUCTION, LETS_ENCRYPT_STAGING
from acmednschallenge.exceptions import ConfigError
from acmednschallenge.models import ManagedDomain, RenewalPolicy
from acmednschallenge.propagation import parse_nameserver
from acmednschallenge.storage import sanitized_domain

DEFAULT_DATA_PATH = Path("/var/lib/acmednschallenge")

_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")
_HOSTNAME_RE = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)*\.[a-z]{2,}$", re.IGNORECASE)
_KEY_FILE_MODES = {600: 0o600, 640: 0o640, 644: 0o644}


def parse_duration(value: object) -> timedelta:
    """Parse ``90``, ``"90s"``, ``"30m"``, ``"24h"`` or ``"1h30m"``."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return timedelta(seconds=int(text))
        match = _DURATION_RE.match(text)
        if text and match:
            hours, minutes, seconds = (int(g or 0) for g in match.groups())
            return timedelta(hours=hours, minutes=minutes, seconds=seconds)
    raise ValueError(f"invalid duration: {value!r}")


def is_valid_nameserver(nameserver: str) -> bool:
    """Accept an IP address (optionally with port) or a hostname."""
    try:
        host, _ = parse_nameserver(nameserver)
    except ValueError:
        return False
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return bool(_HOSTNAME_RE.match(host))
    return True


class DomainSettings(BaseModel):
    """One managed domain."""

    name: str
    additional_sans: list[str] = []

    @field_validator("name")
    @classmethod
    def _usable_name(cls, value: str) -> str:
        sanitized_domain(value)
        return value


class ListenSettings(BaseModel):
    """Where the DNS server listens."""

    address: str = "0.0.0.0"
    port: int = Field(default=53, ge=0, le=65535)
    tcp: bool = True


class TemplateSettings(BaseModel):
    """Template rendered after each issued certificate."""

    template_path: Path
    result_path: str

    @field_validator("template_path")
    @classmethod
    def _template_exists(cls, value: Path) -> Path:
        if not value.is_file():
            raise ValueError(f"template file does not exist: {value}")
        return value

    @field_validator("result_path")
    @classmethod
    def _result_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("result_path must not be empty")
        return value


class Settings(BaseModel):
    """All configuration consumed by the service."""

    model_config = {"extra": "forbid"}

    email: str
    accept_terms_of_service: bool = False
    data_path: Path = DEFAULT_DATA_PATH
    managed_domains: list[DomainSettings] = Field(min_length=1)

    renew_before_days: int = Field(default=10, ge=1, le=30)
    dns_ttl: int = Field(default=120, ge=60, le=600)
    cert_validation_interval: timedelta = timedelta(hours=24)
    dns_timeout: timedelta = timedelta(seconds=60)
    private_key_file_mode: int = 0o600

    use_lets_encrypt_test_server: bool = False
    custom_ca_directory: str | None = None
    allow_insecure_ca: bool = False
    custom_nameservers: list[str] = []
    skip_dns_propagation_test: bool = False
    post_certificate_template: TemplateSettings | None = None

    listen: ListenSettings = ListenSettings()
    upstream: str | None = None

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        _, address = parseaddr(value)
        if not address or "@" not in address or address != value.strip():
            raise ValueError(f"invalid email: {value}")
        return address

    @field_validator("data_path")
    @classmethod
    def _absolute_data_path(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"data_path must be an absolute path: {value}")
        return value

    @field_validator("cert_validation_interval", "dns_timeout", mode="before")
    @classmethod
    def _duration(cls, value: object) -> timedelta:
        duration = parse_duration(value)
        if duration <= timedelta(0):
            raise ValueError("duration must be positive")
        return duration

    @field_validator("private_key_file_mode", mode="before")
    @classmethod
    def _key_file_mode(cls, value: object) -> int:
        # Written as in chmod: 600, "600" or "0600"; YAML 1.1 reads a bare 0600 as octal
        if isinstance(value, int) and value in _KEY_FILE_MODES.values():
            return value
        try:
            mode = int(str(value), 10)
        except ValueError:
            mode = -1
        if mode not in _KEY_FILE_MODES:
            raise ValueError(f"private_key_file_mode must be 600, 640 or 644, got {value}")
        return _KEY_FILE_MODES[mode]

    @field_validator("custom_nameservers")
    @classmethod
    def _valid_nameservers(cls, value: list[str]) -> list[str]:
        invalid = [ns for ns in value if not is_valid_nameserver(ns)]
        if invalid:
            raise ValueError(f"invalid nameservers: {', '.join(invalid)}")
        return value

    @field_validator("upstream")
    @classmethod
    def _valid_upstream(cls, value: str | None) -> str | None:
        if value is not None and not is_valid_nameserver(value):
            raise ValueError(f"invalid upstream: {value}")
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if not self.accept_terms_of_service:
            raise ValueError("you must agree to the CA's terms of service (accept_terms_of_service: true)")
        if self.use_lets_encrypt_test_server and self.custom_ca_directory:
            raise ValueError("use_lets_encrypt_test_server and custom_ca_directory are mutually exclusive")
        return self

    @property
    def directory_url(self) -> str:
        """ACME directory to use."""
        if self.custom_ca_directory:
            return self.custom_ca_directory
        if self.use_lets_encrypt_test_server:
            return LETS_ENCRYPT_STAGING
        return LETS_ENCRYPT_PRODUCTION

    @property
    def certificates_path(self) -> Path:
        return self.data_path / "certs"

    @property
    def renewal_policy(self) -> RenewalPolicy:
        return RenewalPolicy(renew_before_days=self.renew_before_days)

    def domains(self) -> list[ManagedDomain]:
        """Managed domains as immutable values."""
        return [
            ManagedDomain(name=d.name, additional_sans=tuple(d.additional_sans))
            for d in self.managed_domains
        ]


def load_settings(path: str | Path) -> Settings:
    """Read and validate a YAML configuration file.

    Raises:
        ConfigError: If the file is missing, not YAML, or invalid.
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise ConfigError(f"cannot read configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"configuration {path} must be a mapping")

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration {path}:\n{e}") from e
