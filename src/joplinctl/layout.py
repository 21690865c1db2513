"""Filesystem layout of a deployed stack, derived from its root directory."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_STACK_DIR = Path("/opt/joplin-stack")


@dataclass(frozen=True, slots=True)
class StackLayout:
    """Every path the stack uses. Build instances with :func:`derive_layout`."""

    root: Path
    compose_file: Path
    env_file: Path
    nginx_dir: Path
    conf_dir: Path
    vhost_file: Path
    webroot: Path
    letsencrypt_dir: Path
    data_dir: Path
    backup_dir: Path
    compose_wrapper: Path
    backup_script: Path

    def directories(self) -> tuple[Path, ...]:
        """Return the directories that must exist before artifacts are written."""
        return (
            self.root,
            self.conf_dir,
            self.webroot,
            self.letsencrypt_dir,
            self.data_dir,
            self.backup_dir,
        )

    def certificate_dir(self, domain: str) -> Path:
        """Return the live certificate directory for *domain*."""
        return self.letsencrypt_dir / "live" / domain


def derive_layout(root: Path | str) -> StackLayout:
    """Return the :class:`StackLayout` rooted at *root*."""
    base = Path(root).expanduser()
    nginx_dir = base / "nginx"
    conf_dir = nginx_dir / "conf.d"
    return StackLayout(
        root=base,
        compose_file=base / "docker-compose.yml",
        env_file=base / ".env",
        nginx_dir=nginx_dir,
        conf_dir=conf_dir,
        vhost_file=conf_dir / "joplin.conf",
        webroot=nginx_dir / "webroot",
        letsencrypt_dir=base / "letsencrypt",
        data_dir=base / "data",
        backup_dir=base / "backups",
        compose_wrapper=base / "compose.sh",
        backup_script=base / "backup-joplin.sh",
    )


__all__ = ["DEFAULT_STACK_DIR", "StackLayout", "derive_layout"]
