"""ACME challenge helpers."""

from acmednschallenge.challenges.dns01 import (
    challenge_fqdn,
    compute_dns_txt_value,
    compute_key_authorization,
    normalize_fqdn,
)

__all__ = [
    "challenge_fqdn",
    "compute_dns_txt_value",
    "compute_key_authorization",
    "normalize_fqdn",
]
