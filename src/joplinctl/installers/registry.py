"""Registry mapping distribution families to their runtime installers."""
from __future__ import annotations

from pathlib import Path

from ..host.distro import DistroProfile
from ..process import ExternalProcess
from .base import RuntimeInstaller, RuntimeInstallError

INSTALLERS: list[type[RuntimeInstaller]] = []


def register_installer(cls: type[RuntimeInstaller]) -> type[RuntimeInstaller]:
    """Class decorator adding *cls* to :data:`INSTALLERS`."""
    if cls not in INSTALLERS:
        INSTALLERS.append(cls)
    return cls


def resolve_installer(
    profile: DistroProfile,
    runner: ExternalProcess,
    *,
    systemctl_bin: str = "systemctl",
    fs_root: Path = Path("/"),
) -> tuple[RuntimeInstaller, DistroProfile]:
    """Return the installer for *profile* and the profile it should install with.

    Direct ``ID`` matches win. Otherwise each ``ID_LIKE`` ancestor is tried in
    order against the families that accept ancestors.
    """
    for cls in INSTALLERS:
        if cls.claims(profile.id):
            return cls(runner, systemctl_bin=systemctl_bin, fs_root=fs_root), profile
    for ancestor in profile.id_like:
        for cls in INSTALLERS:
            if ancestor in cls.ancestors:
                installer = cls(runner, systemctl_bin=systemctl_bin, fs_root=fs_root)
                return installer, cls.fallback_profile(profile)
    shown = profile.id or "unknown"
    raise RuntimeInstallError(
        f"Unsupported distro ({shown}). Install Docker manually and re-run."
    )


__all__ = ["INSTALLERS", "register_installer", "resolve_installer"]
