"""Unit tests for DNS-01 helpers and the registry-backed provider."""

import base64
import hashlib
from concurrent.futures import ThreadPoolExecutor

from acmednschallenge.challenges.dns01 import (
    challenge_fqdn,
    compute_dns_txt_value,
    compute_key_authorization,
    normalize_fqdn,
)
from acmednschallenge.providers.base import ChallengeProvider
from acmednschallenge.providers.registry import RegistryProvider
from acmednschallenge.registry import ChallengeRegistry


class TestKeyAuthorization:
    """Tests for key authorization computation."""

    def test_compute_key_authorization(self):
        """Key authorization is token.thumbprint."""
        assert compute_key_authorization("abc123", "xyz789") == "abc123.xyz789"


class TestDnsTxtValue:
    """Tests for DNS TXT record value computation."""

    def test_compute_dns_txt_value(self):
        """TXT value is base64url(sha256(keyauth))."""
        keyauth = "test-key-authorization"

        expected = (
            base64.urlsafe_b64encode(hashlib.sha256(keyauth.encode()).digest())
            .rstrip(b"=")
            .decode()
        )

        assert compute_dns_txt_value(keyauth) == expected

    def test_compute_dns_txt_value_length(self):
        """TXT value should be 43 characters without padding."""
        txt_value = compute_dns_txt_value("any-key-authorization-string")

        assert len(txt_value) == 43
        assert "=" not in txt_value


class TestChallengeNames:
    """Tests for challenge owner names."""

    def test_challenge_fqdn(self):
        """Challenge name is _acme-challenge.<domain>. in lowercase."""
        assert challenge_fqdn("Example.ORG") == "_acme-challenge.example.org."

    def test_challenge_fqdn_trailing_dot(self):
        """A trailing dot in the input is not doubled."""
        assert challenge_fqdn("example.org.") == "_acme-challenge.example.org."

    def test_wildcard_shares_base_name(self):
        """Wildcard and base domain use the same challenge name."""
        assert challenge_fqdn("*.example.org") == challenge_fqdn("example.org")

    def test_normalize_fqdn(self):
        """normalize_fqdn lowercases and appends the root label."""
        assert normalize_fqdn("A.B.C") == "a.b.c."
        assert normalize_fqdn("a.b.c.") == "a.b.c."


class TestRegistryProvider:
    """Tests for RegistryProvider."""

    def test_provider_implements_interface(self):
        """RegistryProvider should implement ChallengeProvider."""
        provider = RegistryProvider(ChallengeRegistry())
        assert isinstance(provider, ChallengeProvider)

    def test_present_publishes_digest(self):
        """present stores the TXT digest under the challenge name."""
        registry = ChallengeRegistry()
        provider = RegistryProvider(registry)

        provider.present("example.org", "token", "token.thumb")

        assert registry.lookup("_acme-challenge.example.org.") == (
            compute_dns_txt_value("token.thumb"),
        )

    def test_wildcard_and_base_accumulate(self):
        """Wildcard and base domain challenges share one name with two values."""
        registry = ChallengeRegistry()
        provider = RegistryProvider(registry)

        provider.present("example.org", "t1", "t1.thumb")
        provider.present("*.example.org", "t2", "t2.thumb")

        assert registry.lookup("_acme-challenge.example.org.") == (
            compute_dns_txt_value("t1.thumb"),
            compute_dns_txt_value("t2.thumb"),
        )

    def test_cleanup_removes_name(self):
        """cleanup removes the challenge name."""
        registry = ChallengeRegistry()
        provider = RegistryProvider(registry)
        provider.present("example.org", "token", "token.thumb")

        provider.cleanup("example.org", "token", "token.thumb")

        assert registry.lookup("_acme-challenge.example.org.") is None

    def test_cleanup_is_idempotent(self):
        """cleanup with nothing present does not raise."""
        provider = RegistryProvider(ChallengeRegistry())

        provider.cleanup("example.org", "token", "token.thumb")
        provider.cleanup("example.org", "token", "token.thumb")

    def test_concurrent_present_distinct_domains(self):
        """Concurrent present calls for many domains lose no value."""
        registry = ChallengeRegistry()
        provider = RegistryProvider(registry)
        domains = [f"host{i}.example.org" for i in range(100)]

        with ThreadPoolExecutor(max_workers=20) as pool:
            list(pool.map(lambda d: provider.present(d, "tok", f"{d}.thumb"), domains))

        for domain in domains:
            assert registry.lookup(challenge_fqdn(domain)) == (
                compute_dns_txt_value(f"{domain}.thumb"),
            )

    def test_present_logs(self, log_capture):
        """present and cleanup are logged at INFO."""
        provider = RegistryProvider(ChallengeRegistry())

        provider.present("example.org", "token", "token.thumb")
        provider.cleanup("example.org", "token", "token.thumb")

        messages = log_capture.get_messages(name="acmednschallenge.providers")
        assert "TXT record added" in messages
        assert "TXT record removed" in messages
