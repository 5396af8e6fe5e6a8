"""Periodic certificate maintenance for all managed domains."""

import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from acmednschallenge._logging import Timer, get_logger, reset_domains, set_domains
from acmednschallenge.hooks import PostIssueHook
from acmednschallenge.issuer import CertificateIssuer
from acmednschallenge.models import CertificateRecord, DomainOutcome, DomainResult, ManagedDomain
from acmednschallenge.storage import CertificateStore
from acmednschallenge.validation import CertificateValidator

logger = get_logger(__name__)


class CertificateLifecycleManager:
    """Keep one certificate per managed domain valid.

    Each tick runs, per domain and in parallel: load the stored record,
    keep it if valid, otherwise renew it (or obtain a new certificate
    when nothing usable is stored, or when renewal fails), then save.
    Failures are contained to their domain; retries wait for the next
    tick.

    Args:
        domains: Managed domains.
        store: Certificate storage.
        validator: Renewal policy check.
        issuer: Obtains and renews certificates.
        interval: Time between the starts of consecutive ticks.
        hook: Optional action run after each successful save.
        clock: Returns the current time (for tests).
    """

    def __init__(
        self,
        domains: Sequence[ManagedDomain],
        store: CertificateStore,
        validator: CertificateValidator,
        issuer: CertificateIssuer,
        interval: timedelta = timedelta(hours=24),
        hook: PostIssueHook | None = None,
        clock=None,
    ):
        self.domains = list(domains)
        self.store = store
        self.validator = validator
        self.issuer = issuer
        self.interval = interval
        self.hook = hook
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, stop: threading.Event) -> None:
        """Run a tick now and then every ``interval`` until ``stop`` is set.

        A tick in progress is always finished; ``stop`` is only checked
        between ticks.
        """
        logger.info(
            "Certificate service started",
            extra={"domains": [d.name for d in self.domains], "interval_s": self.interval.total_seconds()},
        )
        while not stop.is_set():
            started = time.monotonic()
            self.run_once()
            remaining = self.interval.total_seconds() - (time.monotonic() - started)
            if remaining > 0:
                stop.wait(remaining)
        logger.info("Certificate service stopped")

    def run_once(self) -> list[DomainResult]:
        """Process every managed domain concurrently and wait for all of them.

        Returns:
            One result per domain, in configuration order.
        """
        if not self.domains:
            return []

        logger.info("Certificate check started", extra={"count": len(self.domains)})
        with ThreadPoolExecutor(max_workers=len(self.domains), thread_name_prefix="certs") as pool:
            results = list(pool.map(self.process_domain, self.domains))

        failed = sum(1 for r in results if r.outcome == DomainOutcome.FAILED)
        logger.info("Certificate check finished", extra={"count": len(results), "failed": failed})
        return results

    def process_domain(self, domain: ManagedDomain) -> DomainResult:
        """Bring one domain's certificate up to date. Never raises."""
        token = set_domains([domain.name])
        try:
            with Timer() as timer:
                result = self._process(domain)
            log = logger.error if result.outcome == DomainOutcome.FAILED else logger.info
            log(
                "Domain processed",
                extra={
                    "domain": domain.name,
                    "outcome": str(result.outcome),
                    "duration_ms": round(timer.elapsed_ms),
                },
            )
            return result
        finally:
            reset_domains(token)

    def _process(self, domain: ManagedDomain) -> DomainResult:
        try:
            record = self.store.load(domain.name)
            if record is not None and self.validator.is_valid(record, self._clock()):
                logger.info("Certificate still valid, nothing to do", extra={"domain": domain.name})
                return DomainResult(domain=domain.name, outcome=DomainOutcome.NOOP)

            new_record, outcome = self._issue(domain, record)
            paths = self.store.save(new_record)
        except Exception as e:
            logger.exception("Certificate maintenance failed", extra={"domain": domain.name})
            return DomainResult(domain=domain.name, outcome=DomainOutcome.FAILED, error=str(e))

        if self.hook is not None:
            try:
                self.hook.run(new_record, paths)
            except Exception:
                logger.exception("Post-issue hook failed", extra={"domain": domain.name})
        return DomainResult(domain=domain.name, outcome=outcome)

    def _issue(
        self, domain: ManagedDomain, record: CertificateRecord | None
    ) -> tuple[CertificateRecord, DomainOutcome]:
        if record is not None:
            try:
                renewed = self.issuer.renew(record, domain)
                logger.info("Certificate renewed", extra={"domain": domain.name})
                return renewed, DomainOutcome.RENEWED
            except Exception as e:
                logger.warning(
                    "Renewal failed, obtaining a new certificate",
                    extra={"domain": domain.name, "error": str(e)},
                )
        else:
            logger.info("No usable certificate, obtaining a new one", extra={"domain": domain.name})

        obtained = self.issuer.obtain(domain)
        logger.info("Certificate obtained", extra={"domain": domain.name})
        return obtained, DomainOutcome.OBTAINED
