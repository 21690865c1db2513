"""Container runtime detection and installation entry point."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..process import ExternalProcess
from .distro import OS_RELEASE_PATH, DistroProfile, detect_distro

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RuntimeStatus:
    """Whether the docker CLI exists and its daemon answers."""

    present: bool
    healthy: bool
    started: bool = False


@dataclass(frozen=True, slots=True)
class RuntimeEnsureResult:
    """Outcome of :meth:`HostProbe.ensure_runtime`."""

    status: RuntimeStatus
    installed: bool
    distro: DistroProfile | None = None
    family: str | None = None


@dataclass(slots=True)
class HostProbe:
    """Inspect the host and make the container runtime usable."""

    runner: ExternalProcess
    docker_bin: str = "docker"
    systemctl_bin: str = "systemctl"
    os_release: Path = OS_RELEASE_PATH
    fs_root: Path = Path("/")

    def detect_distro(self) -> DistroProfile:
        """Return the host's :class:`DistroProfile`."""
        return detect_distro(self.os_release)

    def daemon_responds(self) -> bool:
        """Return ``True`` when ``docker info`` succeeds."""
        return self.runner.run([self.docker_bin, "info"]).ok

    def detect_runtime(self) -> RuntimeStatus:
        """Check the runtime, attempting a single daemon start when it is down."""
        if self.runner.which(self.docker_bin) is None:
            return RuntimeStatus(present=False, healthy=False)
        if self.daemon_responds():
            return RuntimeStatus(present=True, healthy=True)
        LOGGER.info("docker present but daemon not responding; attempting start")
        self.runner.run([self.systemctl_bin, "start", "docker"])
        return RuntimeStatus(present=True, healthy=self.daemon_responds(), started=True)

    def ensure_runtime(self) -> RuntimeEnsureResult:
        """Install the runtime when needed and require a responsive daemon.

        Raises :class:`~joplinctl.installers.RuntimeInstallError` when the
        distribution is unsupported, an install step fails, or the daemon still
        does not answer afterwards.
        """
        from ..installers import RuntimeInstallError, resolve_installer

        status = self.detect_runtime()
        if status.healthy:
            return RuntimeEnsureResult(status=status, installed=False)

        profile = self.detect_distro()
        installer, install_profile = resolve_installer(
            profile,
            self.runner,
            systemctl_bin=self.systemctl_bin,
            fs_root=self.fs_root,
        )
        LOGGER.info(
            "Installing Docker CE for %s via the %s installer",
            profile.id or "unknown",
            installer.family,
        )
        installer.install_prerequisites()
        installer.install(install_profile)

        if not self.daemon_responds():
            raise RuntimeInstallError("Docker daemon not available after install.")
        return RuntimeEnsureResult(
            status=RuntimeStatus(present=True, healthy=True),
            installed=True,
            distro=profile,
            family=installer.family,
        )


__all__ = ["HostProbe", "RuntimeEnsureResult", "RuntimeStatus"]
