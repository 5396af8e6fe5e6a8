"""dnslib resolver answering DNS-01 challenge queries from the registry."""

from dnslib import QTYPE, RCODE, RR, TXT, DNSRecord
from dnslib.server import BaseResolver

from acmednschallenge._logging import get_logger
from acmednschallenge.challenges.dns01 import CHALLENGE_LABEL, normalize_fqdn
from acmednschallenge.registry import ChallengeRegistry

logger = get_logger(__name__)

DEFAULT_TTL = 120


class DnsResponder(BaseResolver):
    """First link of a resolver chain that owns ``_acme-challenge`` TXT answers.

    A query is answered here only when it is a TXT query for a challenge
    name that currently has values in the registry. Everything else,
    including challenge names this process never registered, goes to
    ``next_resolver`` unmodified so that other mechanisms can answer.

    Args:
        registry: Registry filled by the challenge provider.
        ttl: TTL of synthesized TXT records.
        next_resolver: Resolver handling every query this one does not own.
    """

    def __init__(
        self,
        registry: ChallengeRegistry,
        ttl: int = DEFAULT_TTL,
        next_resolver: BaseResolver | None = None,
    ):
        self.registry = registry
        self.ttl = ttl
        self.next_resolver = next_resolver

    def resolve(self, request: DNSRecord, handler) -> DNSRecord:
        question = request.q
        fqdn = normalize_fqdn(str(question.qname))

        if not fqdn.startswith(CHALLENGE_LABEL + ".") or question.qtype != QTYPE.TXT:
            return self._delegate(request, handler)

        values = self.registry.lookup(fqdn)
        if not values:
            return self._delegate(request, handler)

        reply = request.reply(ra=0, aa=1)
        for value in values:
            reply.add_answer(RR(question.qname, QTYPE.TXT, rdata=TXT(value), ttl=self.ttl))

        logger.debug("Answered challenge query", extra={"fqdn": fqdn, "answers": len(values)})
        return reply

    def _delegate(self, request: DNSRecord, handler) -> DNSRecord:
        if self.next_resolver is None:
            logger.debug("No next resolver, refusing query", extra={"qname": str(request.q.qname)})
            reply = request.reply()
            reply.header.rcode = RCODE.REFUSED
            return reply
        logger.debug("Delegating query", extra={"qname": str(request.q.qname)})
        return self.next_resolver.resolve(request, handler)
