"""Command-line entry point.

Usage::

    acmednschallenge -c /etc/acmednschallenge/config.yaml
    acmednschallenge -c config.yaml --validate-only
    acmednschallenge -c config.yaml --once
    python -m acmednschallenge -c config.yaml
"""

import argparse
import signal
import sys
import threading

from acmednschallenge._logging import configure_logging, get_logger
from acmednschallenge.config import load_settings
from acmednschallenge.exceptions import ConfigError
from acmednschallenge.models import DomainOutcome

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    from acmednschallenge import __version__

    parser = argparse.ArgumentParser(
        prog="acmednschallenge",
        description="DNS server answering ACME DNS-01 challenges and keeping certificates valid",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Serve DNS for a single certificate check of all domains, then exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    if args.validate_only:
        print("configuration OK")
        return 0

    configure_logging("DEBUG" if args.debug else settings.log_level, settings.log_format)

    from acmednschallenge.server import AcmeDnsService

    service = AcmeDnsService(settings)

    if args.once:
        service.start_dns()
        try:
            results = service.lifecycle.run_once()
        finally:
            service.stop()
        return 1 if any(r.outcome == DomainOutcome.FAILED for r in results) else 0

    stopped = threading.Event()

    def _shutdown(signum, frame) -> None:
        logger.info("Shutdown requested", extra={"signal": signal.Signals(signum).name})
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    service.start()
    stopped.wait()
    service.stop(timeout=30)
    return 0
