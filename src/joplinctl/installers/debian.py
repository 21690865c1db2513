"""Docker CE installation for Debian and Ubuntu."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar

from ..host.distro import DistroProfile
from ..templates import write_atomic
from .base import RuntimeInstaller, RuntimeInstallError
from .registry import register_installer

DOCKER_DOWNLOAD_URL = "https://download.docker.com/linux"
KEYRING_PATH = "/etc/apt/keyrings/docker.gpg"
SOURCES_LIST_PATH = "/etc/apt/sources.list.d/docker.list"
FALLBACK_CODENAME = "bookworm"
DEFAULT_CODENAMES = {"debian": FALLBACK_CODENAME, "ubuntu": "jammy"}
PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)


@register_installer
@dataclass(slots=True)
class DebianInstaller(RuntimeInstaller):
    """Install from the upstream apt repository pinned to the release codename."""

    family: ClassVar[str] = "debian"
    ids: ClassVar[tuple[str, ...]] = ("debian", "ubuntu")
    ancestors: ClassVar[tuple[str, ...]] = ("debian", "ubuntu")

    @classmethod
    def fallback_profile(cls, profile: DistroProfile) -> DistroProfile:
        """Derivatives install from the Debian repository on a known codename."""
        return DistroProfile(
            id="debian",
            id_like=profile.id_like,
            version_id=profile.version_id,
            codename=FALLBACK_CODENAME,
        )

    def install_prerequisites(self) -> None:
        """Install apt transport prerequisites."""
        self._run(["apt-get", "update", "-y"])
        self._run(["apt-get", "install", "-y", "ca-certificates", "curl", "gnupg", "lsb-release"])
        self._refresh_ca_store()

    def install(self, profile: DistroProfile) -> None:
        """Register the signing key and repository, then install the packages."""
        codename = profile.codename or DEFAULT_CODENAMES.get(profile.id, FALLBACK_CODENAME)
        repo_url = f"{DOCKER_DOWNLOAD_URL}/{profile.id}"

        keyring = self._host_path(KEYRING_PATH)
        try:
            keyring.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(keyring.parent, 0o755)
        except OSError as exc:
            raise RuntimeInstallError(f"Failed to prepare {keyring.parent}: {exc}") from exc

        armored = self._run(["curl", "-fsSL", f"{repo_url}/gpg"]).stdout
        self._run(
            ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring)],
            input_text=armored,
        )
        try:
            os.chmod(keyring, 0o644)
        except OSError as exc:
            raise RuntimeInstallError(f"Failed to set permissions on {keyring}: {exc}") from exc

        arch = self._run(["dpkg", "--print-architecture"]).stdout.strip()
        entry = (
            f"deb [arch={arch} signed-by={KEYRING_PATH}] {repo_url} {codename} stable\n"
        )
        sources = self._host_path(SOURCES_LIST_PATH)
        try:
            write_atomic(sources, entry, mode=0o644)
        except OSError as exc:
            raise RuntimeInstallError(f"Failed to write {sources}: {exc}") from exc

        self._run(["apt-get", "update", "-y"])
        self._run(["apt-get", "install", "-y", *PACKAGES])
        self._enable_daemon()


__all__ = ["DebianInstaller", "DEFAULT_CODENAMES", "FALLBACK_CODENAME"]
