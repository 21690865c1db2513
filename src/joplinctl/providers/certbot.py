"""Let's Encrypt issuance and renewal through the certbot service."""
from __future__ import annotations

from dataclasses import dataclass

from ..process import ProcessResult
from ..topology import WEBROOT_MOUNT
from .compose import ComposeInvoker

CERTBOT_SERVICE = "certbot"


class CertificateError(RuntimeError):
    """Raised when certbot does not complete; carries the client's diagnostic."""

    def __init__(self, message: str, diagnostic: str = "") -> None:
        """Store the certbot output alongside the summary *message*."""
        super().__init__(message)
        self.diagnostic = diagnostic


@dataclass(slots=True)
class CertbotProvider:
    """Run the on-demand certbot container against the shared webroot."""

    compose: ComposeInvoker
    service: str = CERTBOT_SERVICE

    def issue_command(self, domain: str, email: str) -> list[str]:
        """Return the compose arguments for a webroot HTTP-01 issuance."""
        return [
            "run",
            "--rm",
            self.service,
            "certonly",
            "--webroot",
            "-w",
            WEBROOT_MOUNT,
            "-d",
            domain,
            "--email",
            email,
            "--agree-tos",
            "--no-eff-email",
            "--non-interactive",
        ]

    def issue(self, domain: str, email: str) -> ProcessResult:
        """Request a certificate for *domain*."""
        return self._run(self.issue_command(domain, email), f"Certificate issuance for {domain}")

    def renew(self) -> ProcessResult:
        """Renew every certificate that is close to expiry."""
        return self._run(["run", "--rm", self.service, "renew"], "Certificate renewal")

    def _run(self, args: list[str], label: str) -> ProcessResult:
        result = self.compose.run(args, check=False)
        if not result.ok:
            raise CertificateError(
                f"{label} failed (exit {result.returncode}).",
                diagnostic=result.diagnostic(),
            )
        return result


__all__ = ["CERTBOT_SERVICE", "CertbotProvider", "CertificateError"]
