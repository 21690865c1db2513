"""Container runtime installers, one module per distribution family.

Importing this package registers every bundled family. A new family is a new
module whose installer class is decorated with :func:`register_installer`.
"""
from __future__ import annotations

from . import arch, debian, rhel, suse  # noqa: F401 - registration side effect
from .arch import ArchInstaller
from .base import RuntimeInstaller, RuntimeInstallError
from .debian import DebianInstaller
from .registry import INSTALLERS, register_installer, resolve_installer
from .rhel import RhelInstaller
from .suse import SuseInstaller

__all__ = [
    "INSTALLERS",
    "ArchInstaller",
    "DebianInstaller",
    "RhelInstaller",
    "RuntimeInstallError",
    "RuntimeInstaller",
    "SuseInstaller",
    "register_installer",
    "resolve_installer",
]
