"""Decide whether a stored certificate is still usable."""

from datetime import datetime, timedelta, timezone

from acmednschallenge._logging import get_logger
from acmednschallenge.models import CertificateRecord, RenewalPolicy

logger = get_logger(__name__)


def days_remaining(not_after: datetime, now: datetime) -> int:
    """Whole days left until ``not_after``.

    Whole hours are counted first and then divided by 24, truncating
    toward zero: 239 hours left is 9 days.
    """
    hours = int((not_after - now) / timedelta(hours=1))
    return int(hours / 24)


class CertificateValidator:
    """Check certificates against a renewal policy.

    Args:
        policy: Renewal threshold.
    """

    def __init__(self, policy: RenewalPolicy):
        self.policy = policy

    def is_valid(self, record: CertificateRecord, now: datetime | None = None) -> bool:
        """Return True if the certificate can be kept for this tick.

        A certificate is invalid when it is expired, when fewer than
        ``renew_before_days`` whole days remain, or when its PEM cannot
        be parsed.

        Args:
            record: Stored certificate.
            now: Reference time (defaults to the current UTC time).

        Returns:
            True if no renewal is needed.
        """
        now = now or datetime.now(timezone.utc)
        try:
            not_after = record.not_after
        except ValueError:
            logger.warning("Certificate cannot be parsed", extra={"domain": record.domain})
            return False

        if now >= not_after:
            logger.info(
                "Certificate has expired",
                extra={"domain": record.domain, "not_after": not_after.isoformat()},
            )
            return False

        days_left = days_remaining(not_after, now)
        logger.info(
            "Certificate expiry checked",
            extra={"domain": record.domain, "days_left": days_left},
        )
        return days_left >= self.policy.renew_before_days
