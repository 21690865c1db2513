"""Operating system identification from ``os-release``."""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path

OS_RELEASE_PATH = Path("/etc/os-release")


@dataclass(frozen=True, slots=True)
class DistroProfile:
    """Identity fields of the running distribution."""

    id: str
    id_like: tuple[str, ...] = ()
    version_id: str = ""
    codename: str = ""

    def with_codename(self, codename: str) -> DistroProfile:
        """Return a copy of the profile using *codename*."""
        return DistroProfile(
            id=self.id,
            id_like=self.id_like,
            version_id=self.version_id,
            codename=codename,
        )


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines, honouring shell quoting."""
    fields: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw_value = line.partition("=")
        try:
            parts = shlex.split(raw_value)
        except ValueError:
            parts = [raw_value.strip("\"'")]
        fields[key.strip()] = " ".join(parts)
    return fields


def detect_distro(path: Path = OS_RELEASE_PATH) -> DistroProfile:
    """Return the :class:`DistroProfile` described by *path*.

    A missing or unreadable file yields a profile with an empty id, which no
    installer claims.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return DistroProfile(id="")
    fields = parse_os_release(text)
    return DistroProfile(
        id=fields.get("ID", "").lower(),
        id_like=tuple(item.lower() for item in fields.get("ID_LIKE", "").split()),
        version_id=fields.get("VERSION_ID", ""),
        codename=fields.get("VERSION_CODENAME", ""),
    )


__all__ = ["DistroProfile", "OS_RELEASE_PATH", "detect_distro", "parse_os_release"]
