"""Provisioning workflow for one deploy run.

The run is a single linear pass through :class:`ProvisionState`. Fatal steps
stop the pass in ``ABORTED``; a failed certificate issuance is recorded and
the pass continues to ``DONE`` with :attr:`Outcome.DONE_DEGRADED`. Re-running
the command is the retry mechanism; every step is safe to repeat.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import CronConfig
from .host import HostProbe
from .installers import RuntimeInstallError
from .layout import StackLayout, derive_layout
from .logging import OperationScope
from .materialize import ConfigMaterializer, MaterializeError
from .params import StackParameters
from .process import ProcessError
from .providers import (
    CertbotProvider,
    CertificateError,
    ComposeError,
    ComposeInvoker,
    CronError,
    CronProvider,
    NginxError,
    NginxProvider,
)
from .tls import CertificatePair, TLSError, remove_placeholder, seed_placeholder
from .topology import build_topology

LOGGER = logging.getLogger(__name__)


class ProvisioningError(RuntimeError):
    """Raised for failures that abort the run."""


class ProvisionState(str, Enum):
    """Checkpoints of the provisioning run."""

    INIT = "init"
    RUNTIME_READY = "runtime-ready"
    CONFIG_WRITTEN = "config-written"
    CORE_SERVICES_UP = "core-services-up"
    CERT_ISSUED = "cert-issued"
    PROXY_RELOADED = "proxy-reloaded"
    BACKUP_SCHEDULED = "backup-scheduled"
    DONE = "done"
    ABORTED = "aborted"


class Outcome(str, Enum):
    """Terminal result of a run."""

    DONE = "done"
    DONE_DEGRADED = "done-degraded"
    ABORTED = "aborted"


@dataclass(slots=True)
class ProvisionReport:
    """Structured record of what a run did."""

    params: StackParameters
    layout: StackLayout
    states: list[ProvisionState] = field(default_factory=lambda: [ProvisionState.INIT])
    outcome: Outcome | None = None
    runtime_installed: bool = False
    cert_attempted: bool = False
    cert_error: str | None = None
    cert_diagnostic: str | None = None
    cron_installed: bool = False
    placeholder_certificate: bool = False
    abort_reason: str | None = None
    messages: list[str] = field(default_factory=list)

    @property
    def state(self) -> ProvisionState:
        """Return the most recent state."""
        return self.states[-1]

    @property
    def degraded(self) -> bool:
        """Return ``True`` when certificate issuance did not complete."""
        return self.cert_error is not None

    def advance(self, state: ProvisionState) -> None:
        """Record a transition to *state*."""
        self.states.append(state)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable summary."""
        return {
            "outcome": self.outcome.value if self.outcome else None,
            "states": [state.value for state in self.states],
            "domain": self.params.domain,
            "stack_dir": str(self.layout.root),
            "runtime_installed": self.runtime_installed,
            "letsencrypt": self.params.use_letsencrypt,
            "cert_attempted": self.cert_attempted,
            "cert_error": self.cert_error,
            "cron_installed": self.cron_installed,
            "placeholder_certificate": self.placeholder_certificate,
            "backup_enabled": self.params.enable_backup,
            "abort_reason": self.abort_reason,
        }


@dataclass(slots=True)
class BringUpOrchestrator:
    """Drive install, render, bring-up, certificates and scheduling in order."""

    params: StackParameters
    probe: HostProbe
    materializer: ConfigMaterializer
    compose: ComposeInvoker
    cron: CronProvider
    schedule: CronConfig = field(default_factory=CronConfig)
    op: OperationScope | None = None
    notify: Callable[[str], None] | None = None
    layout: StackLayout = field(init=False)

    def __post_init__(self) -> None:
        """Derive the layout once from the finalised parameters."""
        self.layout = derive_layout(self.params.stack_dir)
        if self.compose.layout is None:
            self.compose.layout = self.layout

    def run(self) -> ProvisionReport:
        """Execute the run and return its report; never raises for step failures."""
        report = ProvisionReport(params=self.params, layout=self.layout)
        try:
            self._ensure_runtime(report)
            self._write_config(report)
            self._prepare_certificates(report)
            self._start_core_services(report)
            if self.params.use_letsencrypt:
                self._issue_certificate(report)
            else:
                self._explain_manual_certificates(report)
            self._schedule(report)
        except ProvisioningError as exc:
            report.abort_reason = str(exc)
            report.advance(ProvisionState.ABORTED)
            report.outcome = Outcome.ABORTED
            self._step("abort", status="error", detail=str(exc))
            LOGGER.error("Provisioning aborted: %s", exc)
            return report

        report.advance(ProvisionState.DONE)
        report.outcome = Outcome.DONE_DEGRADED if report.degraded else Outcome.DONE
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _ensure_runtime(self, report: ProvisionReport) -> None:
        self._say("[*] Checking container runtime...")
        try:
            result = self.probe.ensure_runtime()
        except RuntimeInstallError as exc:
            self._step("runtime.ensure", status="error", detail=str(exc))
            raise ProvisioningError(str(exc)) from exc
        report.runtime_installed = result.installed
        self._step(
            "runtime.ensure",
            detail={"installed": result.installed, "family": result.family},
        )
        report.advance(ProvisionState.RUNTIME_READY)

    def _write_config(self, report: ProvisionReport) -> None:
        self._say(f"[*] Writing configuration under {self.layout.root}...")
        try:
            written = self.materializer.render(self.params, self.layout)
        except MaterializeError as exc:
            self._step("config.render", status="error", detail=str(exc))
            raise ProvisioningError(str(exc)) from exc
        self._step(
            "config.render",
            detail={"changed": [str(path) for path in written.changed]},
        )
        report.advance(ProvisionState.CONFIG_WRITTEN)

    def _prepare_certificates(self, report: ProvisionReport) -> None:
        # The TLS server block must load before any real certificate exists.
        cert_dir = self.layout.certificate_dir(self.params.domain)
        try:
            seeded = seed_placeholder(cert_dir, self.params.domain)
        except TLSError as exc:
            self._step("cert.placeholder", status="error", detail=str(exc))
            raise ProvisioningError(str(exc)) from exc
        report.placeholder_certificate = CertificatePair(cert_dir).is_placeholder()
        if seeded:
            self._say(f"[*] Seeded self-signed placeholder certificate for {self.params.domain}")
            self._step("cert.placeholder", detail={"directory": str(cert_dir)})

    def _start_core_services(self, report: ProvisionReport) -> None:
        services = list(build_topology().core_services())
        self._say(f"[*] Starting base stack ({'/'.join(services)})...")
        try:
            args = ["up", "-d"] if self.compose.is_legacy else ["up", "-d", "--wait"]
            self.compose.run([*args, *services])
        except (ComposeError, ProcessError) as exc:
            self._step("services.up", status="error", detail=str(exc))
            raise ProvisioningError(f"Services did not become healthy: {exc}") from exc
        self._step("services.up", detail={"services": services})
        report.advance(ProvisionState.CORE_SERVICES_UP)

    def _issue_certificate(self, report: ProvisionReport) -> None:
        domain = self.params.domain
        self._say(f"[*] Requesting Let's Encrypt certificate for {domain}...")
        report.cert_attempted = True
        cert_dir = self.layout.certificate_dir(domain)
        certbot = CertbotProvider(self.compose)
        try:
            # certbot starts a "-0001" lineage when the live directory is taken.
            remove_placeholder(cert_dir)
            certbot.issue(domain, self.params.le_email)
        except (CertificateError, ComposeError, TLSError) as exc:
            diagnostic = getattr(exc, "diagnostic", "") or str(exc)
            report.cert_error = str(exc)
            report.cert_diagnostic = diagnostic
            self._step("cert.issue", status="warning", detail=diagnostic)
            self._restore_placeholder(report, cert_dir)
            report.messages.append(
                f"Certificate issuance failed for {domain}. The stack is serving a self-signed "
                "placeholder certificate.\n"
                f"    certbot said: {diagnostic}\n"
                "    Fix DNS/port 80 reachability, then re-run the deploy or:\n"
                f"      {self.layout.compose_wrapper} --env-file ./.env run --rm certbot "
                f"certonly --webroot -w /var/www/certbot -d {domain}"
            )
            return
        self._step("cert.issue", detail={"domain": domain})
        report.placeholder_certificate = False
        report.advance(ProvisionState.CERT_ISSUED)

        self._say("[*] Reloading nginx with new certs...")
        try:
            NginxProvider(self.compose).reload()
        except NginxError as exc:
            self._step("proxy.reload", status="error", detail=str(exc))
            raise ProvisioningError(f"nginx reload failed: {exc}") from exc
        self._step("proxy.reload")
        report.advance(ProvisionState.PROXY_RELOADED)

    def _restore_placeholder(self, report: ProvisionReport, cert_dir: Path) -> None:
        try:
            seed_placeholder(cert_dir, self.params.domain)
        except TLSError as exc:
            raise ProvisioningError(str(exc)) from exc
        report.placeholder_certificate = CertificatePair(cert_dir).is_placeholder()

    def _explain_manual_certificates(self, report: ProvisionReport) -> None:
        cert_dir = self.layout.certificate_dir(self.params.domain)
        restart = NginxProvider(self.compose).restart_command()
        report.messages.append(
            "Let's Encrypt disabled.\n"
            f"    Place your certs at: {cert_dir}/{{fullchain.pem,privkey.pem}}\n"
            "    Then reload nginx:\n"
            f"      {restart}"
        )
        self._step("cert.issue", status="skipped", detail="letsencrypt disabled")

    def _schedule(self, report: ProvisionReport) -> None:
        if not self.params.install_cron:
            self._step("cron.install", status="skipped", detail="--no-cron")
            return
        content = self.materializer.render_cron(self.params, self.layout, self.schedule)
        try:
            if content is None:
                self.cron.remove()
                self._step("cron.install", status="skipped", detail="nothing to schedule")
                return
            self._say("[*] Installing cron jobs...")
            reloaded = self.cron.install(content)
        except CronError as exc:
            self._step("cron.install", status="error", detail=str(exc))
            raise ProvisioningError(str(exc)) from exc
        report.cron_installed = True
        self._step(
            "cron.install",
            detail={"file": str(self.cron.cron_file), "scheduler_reloaded": reloaded},
        )
        if self.params.backup_scheduled:
            report.advance(ProvisionState.BACKUP_SCHEDULED)

    # ------------------------------------------------------------------
    def _step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        if self.op is not None:
            self.op.add_step(name, status=status, detail=detail)

    def _say(self, message: str) -> None:
        LOGGER.info(message)
        if self.notify is not None:
            self.notify(message)


__all__ = [
    "BringUpOrchestrator",
    "Outcome",
    "ProvisionReport",
    "ProvisionState",
    "ProvisioningError",
]
