"""Wait until DNS-01 TXT values are visible to recursive resolvers."""

import ipaddress
import time

import dns.exception
import dns.nameserver
import dns.resolver

from acmednschallenge._logging import get_logger

logger = get_logger(__name__)


def parse_nameserver(nameserver: str) -> tuple[str, int]:
    """Split ``host``, ``host:port``, ``ipv6`` or ``[ipv6]:port`` into host and port.

    Raises:
        ValueError: If the port is not a valid number.
    """
    nameserver = nameserver.strip()
    if nameserver.startswith("["):
        host, _, rest = nameserver[1:].partition("]")
        port = rest.lstrip(":") or "53"
    elif nameserver.count(":") == 1:
        host, port = nameserver.split(":")
    else:
        host, port = nameserver, "53"

    port_number = int(port)
    if not 0 < port_number < 65536:
        raise ValueError(f"Invalid port in nameserver {nameserver!r}")
    return host, port_number


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class PropagationChecker:
    """Poll recursive resolvers until a TXT record carries the expected value.

    Args:
        nameservers: Resolvers to ask (``host[:port]``). Empty means the
            system resolver configuration.
        timeout: Seconds to wait before giving up.
        interval: Seconds between attempts.
        resolver: Preconfigured resolver, mainly for tests.
    """

    def __init__(
        self,
        nameservers: list[str] | None = None,
        timeout: float = 60,
        interval: float = 2,
        resolver: dns.resolver.Resolver | None = None,
    ):
        self.nameservers = list(nameservers or [])
        self.timeout = timeout
        self.interval = interval
        self._resolver = resolver

    @property
    def resolver(self) -> dns.resolver.Resolver:
        """Resolver used for the checks (built on first use)."""
        if self._resolver is None:
            self._resolver = self._build_resolver()
        return self._resolver

    def _build_resolver(self) -> dns.resolver.Resolver:
        if not self.nameservers:
            return dns.resolver.Resolver()

        resolver = dns.resolver.Resolver(configure=False)
        servers: list[dns.nameserver.Nameserver] = []
        for nameserver in self.nameservers:
            host, port = parse_nameserver(nameserver)
            if _is_ip(host):
                ips = [host]
            else:
                ips = [rr.to_text() for rr in dns.resolver.resolve(host, "A")]
            servers.extend(dns.nameserver.Do53Nameserver(ip, port) for ip in ips)
        resolver.nameservers = servers
        return resolver

    def lookup(self, fqdn: str) -> set[str]:
        """Return the TXT values currently visible for ``fqdn``."""
        try:
            answer = self.resolver.resolve(fqdn, "TXT", raise_on_no_answer=False)
        except dns.exception.DNSException as e:
            logger.debug("TXT lookup failed", extra={"fqdn": fqdn, "error": str(e)})
            return set()
        return {b"".join(rdata.strings).decode() for rdata in answer}

    def wait_for(self, fqdn: str, value: str) -> bool:
        """Block until ``value`` is served for ``fqdn`` or the timeout passes.

        Returns:
            True if the value was seen, False on timeout.
        """
        deadline = time.monotonic() + self.timeout
        while True:
            if value in self.lookup(fqdn):
                logger.debug("TXT record visible", extra={"fqdn": fqdn})
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.interval)
