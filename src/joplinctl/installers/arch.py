"""Docker installation for Arch Linux."""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from ..host.distro import DistroProfile
from .base import RuntimeInstaller
from .registry import register_installer

PACMAN = ("pacman", "-Sy", "--noconfirm")


@register_installer
@dataclass(slots=True)
class ArchInstaller(RuntimeInstaller):
    """Install from the official repositories with pacman."""

    family: ClassVar[str] = "arch"
    ids: ClassVar[tuple[str, ...]] = ("arch",)

    def install_prerequisites(self) -> None:
        """Install certificate and download tooling."""
        self._run([*PACMAN, "ca-certificates", "curl"])
        self._refresh_ca_store()

    def install(self, profile: DistroProfile) -> None:
        """Install docker with compose, falling back to docker alone."""
        self._first_success(
            [[*PACMAN, "docker", "docker-compose"], [*PACMAN, "docker"]],
            error="pacman could not install docker.",
        )
        self._enable_daemon()


__all__ = ["ArchInstaller"]
