"""Host inspection helpers used by the provisioning workflow."""
from __future__ import annotations

from .distro import DistroProfile, detect_distro, parse_os_release
from .probe import HostProbe, RuntimeStatus

__all__ = [
    "DistroProfile",
    "HostProbe",
    "RuntimeStatus",
    "detect_distro",
    "parse_os_release",
]
