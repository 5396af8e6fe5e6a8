"""Side effects run after a certificate has been saved."""

import os
from abc import ABC, abstractmethod
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from acmednschallenge._logging import get_logger
from acmednschallenge.models import CertificateRecord
from acmednschallenge.storage import CertificatePaths, sanitized_domain

logger = get_logger(__name__)


class PostIssueHook(ABC):
    """Called by the lifecycle manager after each successful save."""

    @abstractmethod
    def run(self, record: CertificateRecord, paths: CertificatePaths) -> None:
        """Handle a freshly stored certificate.

        Raises:
            Exception: Errors are logged by the caller and do not change
                the domain's outcome.
        """
        ...


class TemplateHook(PostIssueHook):
    """Render a Jinja2 template after issuance, e.g. a server config snippet.

    Both the template and the result path see these variables:

    - ``domain``: sanitized domain name
    - ``dir``: directory holding the certificate files
    - ``crt``, ``key``, ``pem``: file names of the chain, key and bundle

    Args:
        template_path: Template file to render.
        result_path: Output path; may contain the same variables.
    """

    def __init__(self, template_path: str | Path, result_path: str):
        template_path = Path(template_path)
        self.template_path = template_path
        self.result_path = result_path
        self._env = Environment(
            loader=FileSystemLoader(str(template_path.parent)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def context(self, record: CertificateRecord, paths: CertificatePaths) -> dict[str, str]:
        return {
            "domain": sanitized_domain(record.domain),
            "dir": str(paths.certificate.parent),
            "crt": paths.certificate.name,
            "key": paths.private_key.name,
            "pem": paths.bundle.name,
        }

    def run(self, record: CertificateRecord, paths: CertificatePaths) -> None:
        context = self.context(record, paths)
        rendered = self._env.get_template(self.template_path.name).render(**context)
        target = Path(self._env.from_string(self.result_path).render(**context))

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(rendered)
        os.chmod(target, 0o644)
        logger.info("Post-issue template rendered", extra={"domain": record.domain, "path": str(target)})
