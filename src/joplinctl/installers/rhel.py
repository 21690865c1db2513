"""Docker CE installation for RHEL, its rebuilds, and Fedora."""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from ..host.distro import DistroProfile
from .base import RuntimeInstaller, RuntimeInstallError
from .registry import register_installer

REPO_BASE = "https://download.docker.com/linux"
CENTOS_REPO = f"{REPO_BASE}/centos/docker-ce.repo"
REPO_CHAINS: dict[str, tuple[str, ...]] = {
    "fedora": (f"{REPO_BASE}/fedora/docker-ce.repo",),
    "rhel": (f"{REPO_BASE}/rhel/docker-ce.repo", CENTOS_REPO),
    "centos": (CENTOS_REPO,),
    "rocky": (CENTOS_REPO,),
    "almalinux": (CENTOS_REPO,),
    "ol": (CENTOS_REPO,),
}
DNF_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)
YUM_PACKAGES = ("docker-ce", "docker-ce-cli", "containerd.io")


def repo_chain(distro_id: str) -> tuple[str, ...]:
    """Return repository URLs to try, in order, for *distro_id*."""
    return REPO_CHAINS.get(distro_id, (CENTOS_REPO,))


@register_installer
@dataclass(slots=True)
class RhelInstaller(RuntimeInstaller):
    """Install from the upstream dnf/yum repository."""

    family: ClassVar[str] = "rhel"
    ids: ClassVar[tuple[str, ...]] = tuple(REPO_CHAINS)
    ancestors: ClassVar[tuple[str, ...]] = ("rhel", "fedora")

    def _package_manager(self) -> str:
        for candidate in ("dnf", "yum"):
            if self.runner.which(candidate):
                return candidate
        raise RuntimeInstallError("Neither dnf nor yum is available on this host.")

    def install_prerequisites(self) -> None:
        """Install repository tooling for whichever package manager exists."""
        manager = self._package_manager()
        plugins = "dnf-plugins-core" if manager == "dnf" else "yum-utils"
        self._run([manager, "-y", "install", plugins, "ca-certificates", "curl", "gnupg2"])
        self._refresh_ca_store()

    def install(self, profile: DistroProfile) -> None:
        """Add the repository for *profile* and install the runtime."""
        manager = self._package_manager()
        if manager == "dnf":
            chain = repo_chain(profile.id)
            self._first_success(
                [["dnf", "config-manager", "--add-repo", url] for url in chain],
                error=f"Could not add a Docker repository for {profile.id or 'unknown'}.",
            )
            self._run(["dnf", "-y", "install", *DNF_PACKAGES])
        else:
            self._run(["yum-config-manager", "--add-repo", CENTOS_REPO])
            self._run(["yum", "-y", "install", *YUM_PACKAGES])
        self._enable_daemon()


__all__ = ["CENTOS_REPO", "RhelInstaller", "repo_chain"]
