"""Base class shared by the per-family container runtime installers."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from ..host.distro import DistroProfile
from ..process import ExternalProcess, ProcessError, ProcessResult

LOGGER = logging.getLogger(__name__)

DOCKER_SERVICE = "docker"


class RuntimeInstallError(RuntimeError):
    """Raised when the container runtime cannot be installed."""


@dataclass(slots=True)
class RuntimeInstaller:
    """Install Docker CE and compose tooling for one distribution family.

    Subclasses declare the distribution ids they claim directly (``ids`` and
    ``id_prefixes``) and the ``ID_LIKE`` ancestors they accept as a fallback
    (``ancestors``), then implement :meth:`install`.
    """

    family: ClassVar[str] = ""
    ids: ClassVar[tuple[str, ...]] = ()
    id_prefixes: ClassVar[tuple[str, ...]] = ()
    ancestors: ClassVar[tuple[str, ...]] = ()

    runner: ExternalProcess
    systemctl_bin: str = "systemctl"
    fs_root: Path = Path("/")

    @classmethod
    def claims(cls, distro_id: str) -> bool:
        """Return ``True`` when *distro_id* belongs to this family."""
        if not distro_id:
            return False
        return distro_id in cls.ids or any(
            distro_id.startswith(prefix) for prefix in cls.id_prefixes
        )

    @classmethod
    def fallback_profile(cls, profile: DistroProfile) -> DistroProfile:
        """Return the profile to install with when matched through ``ID_LIKE``."""
        return profile

    def install_prerequisites(self) -> None:
        """Install certificate and download tooling needed by :meth:`install`."""

    def install(self, profile: DistroProfile) -> None:
        """Install and start the container runtime for *profile*."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    def _host_path(self, path: str) -> Path:
        return self.fs_root / path.lstrip("/")

    def _run(self, args: Sequence[str], *, input_text: str | None = None) -> ProcessResult:
        result = self.runner.run(list(args), input_text=input_text)
        try:
            return result.check()
        except ProcessError as exc:
            raise RuntimeInstallError(str(exc)) from exc

    def _attempt(self, args: Sequence[str]) -> bool:
        """Run *args*; return whether it succeeded without raising."""
        result = self.runner.run(list(args))
        if not result.ok:
            LOGGER.debug(
                "%s failed (exit %s): %s",
                " ".join(args),
                result.returncode,
                result.diagnostic(),
            )
        return result.ok

    def _first_success(self, candidates: Sequence[Sequence[str]], *, error: str) -> None:
        for args in candidates:
            if self._attempt(args):
                return
        raise RuntimeInstallError(error)

    def _refresh_ca_store(self) -> None:
        self._attempt(["update-ca-certificates"])

    def _enable_daemon(self) -> None:
        self._run([self.systemctl_bin, "enable", "--now", DOCKER_SERVICE])


__all__ = ["DOCKER_SERVICE", "RuntimeInstallError", "RuntimeInstaller"]
