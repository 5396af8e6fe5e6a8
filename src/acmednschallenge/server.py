"""Wire registry, DNS listeners and certificate lifecycle into one service."""

import threading

from dnslib.proxy import ProxyResolver
from dnslib.server import DNSLogger, DNSServer

from acmednschallenge._logging import get_logger
from acmednschallenge.config import Settings
from acmednschallenge.hooks import TemplateHook
from acmednschallenge.issuer import AcmeIssuer, CertificateIssuer, load_or_create_account_key
from acmednschallenge.lifecycle import CertificateLifecycleManager
from acmednschallenge.propagation import PropagationChecker, parse_nameserver
from acmednschallenge.providers.registry import RegistryProvider
from acmednschallenge.registry import ChallengeRegistry
from acmednschallenge.responder import DnsResponder
from acmednschallenge.storage import CertificateStore
from acmednschallenge.validation import CertificateValidator

logger = get_logger(__name__)
dns_logger = get_logger("acmednschallenge.dns")

UPSTREAM_TIMEOUT = 5


def _dnslib_logger() -> DNSLogger:
    return DNSLogger("truncated,error", prefix=False, logf=dns_logger.warning)


class AcmeDnsService:
    """DNS listeners answering challenges plus the certificate maintenance loop.

    Args:
        settings: Validated configuration.
        issuer: Certificate issuer; built from the settings when omitted.
    """

    def __init__(self, settings: Settings, issuer: CertificateIssuer | None = None):
        self.settings = settings
        self.registry = ChallengeRegistry()
        self.provider = RegistryProvider(self.registry)

        upstream = None
        if settings.upstream:
            host, port = parse_nameserver(settings.upstream)
            upstream = ProxyResolver(host, port, timeout=UPSTREAM_TIMEOUT)
        else:
            logger.warning("No upstream configured, non-challenge queries will be refused")
        self.responder = DnsResponder(self.registry, ttl=settings.dns_ttl, next_resolver=upstream)

        self.store = CertificateStore(settings.certificates_path, settings.private_key_file_mode)
        self.issuer = issuer or self._build_issuer()

        hook = None
        if settings.post_certificate_template:
            template = settings.post_certificate_template
            hook = TemplateHook(template.template_path, template.result_path)

        self.lifecycle = CertificateLifecycleManager(
            settings.domains(),
            self.store,
            CertificateValidator(settings.renewal_policy),
            self.issuer,
            interval=settings.cert_validation_interval,
            hook=hook,
        )

        self._servers: list[DNSServer] = []
        self._stop = threading.Event()
        self._lifecycle_thread: threading.Thread | None = None

    def _build_issuer(self) -> AcmeIssuer:
        settings = self.settings
        propagation = None
        if not settings.skip_dns_propagation_test:
            propagation = PropagationChecker(
                settings.custom_nameservers,
                timeout=settings.dns_timeout.total_seconds(),
            )
        return AcmeIssuer(
            settings.directory_url,
            load_or_create_account_key(settings.data_path, settings.email),
            settings.email,
            self.provider,
            terms_of_service_agreed=settings.accept_terms_of_service,
            verify=not settings.allow_insecure_ca,
            propagation=propagation,
        )

    @property
    def dns_port(self) -> int | None:
        """Port the UDP listener is bound to (useful with port 0)."""
        if not self._servers:
            return None
        return self._servers[0].server.server_address[1]

    def start_dns(self) -> None:
        """Bind and start the UDP (and optionally TCP) listeners."""
        listen = self.settings.listen
        udp = DNSServer(
            self.responder,
            address=listen.address,
            port=listen.port,
            logger=_dnslib_logger(),
        )
        self._servers.append(udp)
        if listen.tcp:
            port = udp.server.server_address[1]
            self._servers.append(
                DNSServer(
                    self.responder,
                    address=listen.address,
                    port=port,
                    tcp=True,
                    logger=_dnslib_logger(),
                )
            )
        for server in self._servers:
            server.start_thread()
        logger.info("DNS server listening", extra={"address": listen.address, "port": self.dns_port})

    def start(self) -> None:
        """Start DNS listeners and the certificate loop in background threads."""
        self.start_dns()
        self._lifecycle_thread = threading.Thread(
            target=self.lifecycle.run,
            args=(self._stop,),
            name="certificate-lifecycle",
            daemon=True,
        )
        self._lifecycle_thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop listeners and ask the certificate loop to finish its tick."""
        self._stop.set()
        for server in self._servers:
            server.stop()
        self._servers.clear()
        if self._lifecycle_thread is not None:
            self._lifecycle_thread.join(timeout)
        logger.info("Service stopped")
