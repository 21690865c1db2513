"""Docker installation for openSUSE and SLES."""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from ..host.distro import DistroProfile
from .base import RuntimeInstaller
from .registry import register_installer

ZYPPER = ("zypper", "--non-interactive")


@register_installer
@dataclass(slots=True)
class SuseInstaller(RuntimeInstaller):
    """Install from the distribution repositories with zypper."""

    family: ClassVar[str] = "suse"
    ids: ClassVar[tuple[str, ...]] = ("sles", "suse")
    id_prefixes: ClassVar[tuple[str, ...]] = ("opensuse",)

    def install_prerequisites(self) -> None:
        """Install certificate and download tooling."""
        self._run([*ZYPPER, "install", "-y", "ca-certificates", "curl", "gpg2"])
        self._refresh_ca_store()

    def install(self, profile: DistroProfile) -> None:
        """Install docker with compose, falling back to docker alone."""
        self._run([*ZYPPER, "refresh"])
        self._first_success(
            [
                [*ZYPPER, "install", "-y", "docker", "docker-compose"],
                [*ZYPPER, "install", "-y", "docker"],
            ],
            error="zypper could not install docker.",
        )
        self._enable_daemon()


__all__ = ["SuseInstaller"]
