"""Integration tests for the DNS listeners (real sockets on localhost)."""

from collections.abc import Generator

import dns.flags
import dns.message
import dns.query
import dns.rcode
import dns.rdatatype
import pytest
from dnslib import QTYPE, RR, A
from dnslib.server import BaseResolver, DNSServer

from acmednschallenge.challenges.dns01 import compute_dns_txt_value
from acmednschallenge.config import Settings
from acmednschallenge.issuer import CertificateIssuer
from acmednschallenge.server import AcmeDnsService

pytestmark = pytest.mark.integration


class UnusedIssuer(CertificateIssuer):
    def obtain(self, domain):
        raise AssertionError("not expected")

    def renew(self, record, domain):
        raise AssertionError("not expected")


class StaticResolver(BaseResolver):
    """Upstream answering every A query with 192.0.2.1."""

    def resolve(self, request, handler):
        reply = request.reply()
        if request.q.qtype == QTYPE.A:
            reply.add_answer(RR(request.q.qname, QTYPE.A, rdata=A("192.0.2.1"), ttl=60))
        return reply


@pytest.fixture
def upstream() -> Generator[int]:
    server = DNSServer(StaticResolver(), address="127.0.0.1", port=0)
    server.start_thread()
    try:
        yield server.server.server_address[1]
    finally:
        server.stop()


def make_service(tmp_path, upstream_port: int | None) -> AcmeDnsService:
    settings = Settings.model_validate(
        {
            "email": "admin@example.org",
            "accept_terms_of_service": True,
            "data_path": str(tmp_path),
            "managed_domains": [{"name": "example.org"}],
            "dns_ttl": 90,
            "listen": {"address": "127.0.0.1", "port": 0},
            "upstream": f"127.0.0.1:{upstream_port}" if upstream_port else None,
        }
    )
    return AcmeDnsService(settings, issuer=UnusedIssuer())


@pytest.fixture
def service(tmp_path, upstream) -> Generator[AcmeDnsService]:
    service = make_service(tmp_path, upstream)
    service.start_dns()
    try:
        yield service
    finally:
        service.stop()


def query(service: AcmeDnsService, name: str, rdtype: str = "TXT", tcp: bool = False) -> dns.message.Message:
    request = dns.message.make_query(name, rdtype)
    send = dns.query.tcp if tcp else dns.query.udp
    return send(request, "127.0.0.1", port=service.dns_port, timeout=3)


def txt_values(response: dns.message.Message) -> set[str]:
    return {
        b"".join(rdata.strings).decode()
        for rrset in response.answer
        if rrset.rdtype == dns.rdatatype.TXT
        for rdata in rrset
    }


class TestChallengeAnswers:
    """Challenge TXT queries over the wire."""

    def test_presented_value_is_served(self, service):
        """A presented challenge is answered over UDP."""
        service.provider.present("example.org", "token", "token.thumb")

        response = query(service, "_acme-challenge.example.org.")

        assert response.rcode() == dns.rcode.NOERROR
        assert response.flags & dns.flags.AA
        assert txt_values(response) == {compute_dns_txt_value("token.thumb")}
        assert response.answer[0].ttl == 90

    def test_served_over_tcp(self, service):
        """The TCP listener answers the same way."""
        service.provider.present("example.org", "token", "token.thumb")

        response = query(service, "_acme-challenge.example.org.", tcp=True)

        assert txt_values(response) == {compute_dns_txt_value("token.thumb")}

    def test_wildcard_and_base_both_served(self, service):
        """Both values for a shared name are returned."""
        service.provider.present("example.org", "t1", "t1.thumb")
        service.provider.present("*.example.org", "t2", "t2.thumb")

        response = query(service, "_acme-challenge.example.org.")

        assert txt_values(response) == {
            compute_dns_txt_value("t1.thumb"),
            compute_dns_txt_value("t2.thumb"),
        }

    def test_cleanup_delegates_again(self, service):
        """After cleanup the name is no longer answered locally."""
        service.provider.present("example.org", "token", "token.thumb")
        service.provider.cleanup("example.org", "token", "token.thumb")

        response = query(service, "_acme-challenge.example.org.")

        assert txt_values(response) == set()


class TestDelegation:
    """Everything else goes upstream."""

    def test_other_queries_are_forwarded(self, service):
        """A queries reach the upstream resolver."""
        response = query(service, "www.example.org.", "A")

        assert [rdata.address for rrset in response.answer for rdata in rrset] == ["192.0.2.1"]

    def test_refused_without_upstream(self, tmp_path):
        """Without an upstream non-challenge queries are refused."""
        service = make_service(tmp_path, None)
        service.start_dns()
        try:
            response = query(service, "www.example.org.", "A")
        finally:
            service.stop()

        assert response.rcode() == dns.rcode.REFUSED
