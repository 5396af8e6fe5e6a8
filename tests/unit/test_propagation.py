"""Unit tests for DNS propagation checks."""

import dns.exception
import dns.resolver
import pytest

from acmednschallenge.propagation import PropagationChecker, parse_nameserver


class FakeRdata:
    def __init__(self, value: str):
        self.strings = (value.encode(),)


class FakeResolver:
    """Returns queued answers, one list of TXT values per query."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.queries: list[str] = []

    def resolve(self, qname, rdtype, raise_on_no_answer=True):
        self.queries.append(qname)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return [FakeRdata(v) for v in answer]


class TestParseNameserver:
    """Tests for nameserver address parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1.1.1.1", ("1.1.1.1", 53)),
            ("1.1.1.1:5353", ("1.1.1.1", 5353)),
            ("ns1.example.org", ("ns1.example.org", 53)),
            ("2001:db8::1", ("2001:db8::1", 53)),
            ("[2001:db8::1]:5353", ("2001:db8::1", 5353)),
            ("[2001:db8::1]", ("2001:db8::1", 53)),
        ],
    )
    def test_valid(self, value, expected):
        """Host and optional port are split."""
        assert parse_nameserver(value) == expected

    @pytest.mark.parametrize("value", ["1.1.1.1:0", "1.1.1.1:65536", "1.1.1.1:x"])
    def test_invalid_port(self, value):
        """Bad ports raise ValueError."""
        with pytest.raises(ValueError):
            parse_nameserver(value)


class TestPropagationChecker:
    """Tests for PropagationChecker."""

    def test_lookup_joins_strings(self):
        """TXT character strings are joined per record."""
        checker = PropagationChecker(resolver=FakeResolver([["a", "b"]]))

        assert checker.lookup("_acme-challenge.example.org.") == {"a", "b"}

    def test_lookup_failure_is_empty(self):
        """Resolver errors read as nothing visible yet."""
        checker = PropagationChecker(resolver=FakeResolver([dns.resolver.NXDOMAIN()]))

        assert checker.lookup("_acme-challenge.example.org.") == set()

    def test_wait_for_polls_until_visible(self):
        """Polling continues until the value appears."""
        resolver = FakeResolver([dns.exception.Timeout(), ["other"], ["other", "expected"]])
        checker = PropagationChecker(timeout=10, interval=0, resolver=resolver)

        assert checker.wait_for("_acme-challenge.example.org.", "expected") is True
        assert len(resolver.queries) == 3

    def test_wait_for_times_out(self):
        """A value that never appears returns False."""
        checker = PropagationChecker(timeout=0, interval=0, resolver=FakeResolver([["other"]]))

        assert checker.wait_for("_acme-challenge.example.org.", "expected") is False

    def test_builds_resolver_from_nameservers(self):
        """Configured IP nameservers replace the system ones."""
        checker = PropagationChecker(["192.0.2.1", "[2001:db8::1]:5353"])

        servers = checker.resolver.nameservers

        assert [(ns.address, ns.port) for ns in servers] == [("192.0.2.1", 53), ("2001:db8::1", 5353)]
