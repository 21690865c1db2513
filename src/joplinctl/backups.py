"""Database dumps and configuration snapshots for a deployed stack."""
from __future__ import annotations

import gzip
import hashlib
import logging
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from .layout import StackLayout
from .process import ExternalProcess, ProcessError
from .topology import DB_CONTAINER

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
MANIFEST_NAME = "SHA256SUMS"
LOG_NAME = "last.log"
CONTAINER_DUMP_PATH = "/tmp/joplin.dump"
DEFAULT_RETENTION_DAYS = 14

_DUMP_CUSTOM = (
    'export PGPASSWORD="$POSTGRES_PASSWORD"; '
    f'pg_dump -U "$POSTGRES_USER" -d "$POSTGRES_DB" -F c -Z 9 -f {CONTAINER_DUMP_PATH}'
)
_DUMP_PLAIN = 'export PGPASSWORD="$POSTGRES_PASSWORD"; pg_dump -U "$POSTGRES_USER" -d "$POSTGRES_DB"'


class BackupError(RuntimeError):
    """Raised when backup operations fail."""


@dataclass(frozen=True, slots=True)
class BackupArchive:
    """A completed, checksummed backup directory."""

    path: Path
    created_at: datetime
    checksums: dict[str, str]
    pruned: tuple[Path, ...] = ()

    @property
    def manifest(self) -> Path:
        """Return the path of the checksum manifest."""
        return self.path / MANIFEST_NAME


def _compute_checksum(path: Path) -> str:
    """Return the SHA-256 checksum for *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_manifest(archive_dir: Path) -> dict[str, str]:
    """Checksum every file under *archive_dir* into ``SHA256SUMS``."""
    checksums: dict[str, str] = {}
    for path in sorted(archive_dir.rglob("*")):
        if not path.is_file() or path.name == MANIFEST_NAME:
            continue
        checksums[path.relative_to(archive_dir).as_posix()] = _compute_checksum(path)
    lines = [f"{digest}  {name}" for name, digest in checksums.items()]
    (archive_dir / MANIFEST_NAME).write_text("\n".join(lines) + "\n", encoding="utf-8")
    return checksums


def archive_timestamp(path: Path) -> datetime:
    """Return the creation time encoded in *path*'s name, else its mtime."""
    try:
        return datetime.strptime(path.name, TIMESTAMP_FORMAT)
    except ValueError:
        return datetime.fromtimestamp(path.stat().st_mtime)


def prune_archives(
    backup_dir: Path,
    *,
    retention_days: int,
    now: datetime,
    keep: Iterable[Path] = (),
) -> list[Path]:
    """Delete archive directories older than *retention_days*; return those removed."""
    threshold = now - timedelta(days=retention_days)
    protected = {path.resolve() for path in keep}
    removed: list[Path] = []
    if not backup_dir.exists():
        return removed
    for child in sorted(backup_dir.iterdir()):
        if not child.is_dir() or child.resolve() in protected:
            continue
        if archive_timestamp(child) < threshold:
            shutil.rmtree(child)
            removed.append(child)
    return removed


def copy_into(source: Path, destination: Path) -> None:
    """Copy or mirror *source* into *destination*."""
    if not source.exists():
        raise BackupError(f"{source} is missing; cannot snapshot configuration.")
    if source.is_dir():
        shutil.copytree(source, destination, dirs_exist_ok=True)
    else:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)


@dataclass(slots=True)
class BackupJob:
    """Dump the database and snapshot configuration into ``backups/<timestamp>/``.

    Credentials are read from the running database container rather than from
    ``.env`` so rotated passwords keep working. Old archives are pruned only
    after the current archive is complete.
    """

    runner: ExternalProcess
    layout: StackLayout
    docker_bin: str = "docker"
    db_container: str = DB_CONTAINER
    retention_days: int = DEFAULT_RETENTION_DAYS
    clock: Callable[[], datetime] = field(default=datetime.now)

    @property
    def log_path(self) -> Path:
        """Return the path of the human-readable backup log."""
        return self.layout.backup_dir / LOG_NAME

    def run(self) -> BackupArchive:
        """Create one archive and prune expired ones."""
        backup_dir = self.layout.backup_dir
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Failed to prepare {backup_dir}: {exc}") from exc

        now = self.clock()
        stamp = now.strftime(TIMESTAMP_FORMAT)
        destination = backup_dir / stamp
        if destination.exists():
            raise BackupError(f"Backup directory {destination} already exists.")
        self._log(f"== {now.isoformat(sep=' ', timespec='seconds')} ==")

        try:
            destination.mkdir(parents=True)
            db_name = self._container_env("POSTGRES_DB")
            self._log("[*] pg_dump (custom)...")
            self._dump_custom(destination / f"postgres_{db_name}_{stamp}.dump")
            self._log("[*] pg_dump (plain)...")
            self._dump_plain(destination / f"postgres_{db_name}_{stamp}.sql.gz")
            copy_into(self.layout.compose_file, destination / self.layout.compose_file.name)
            copy_into(self.layout.env_file, destination / self.layout.env_file.name)
            copy_into(self.layout.nginx_dir, destination / self.layout.nginx_dir.name)
            checksums = write_manifest(destination)
        except (BackupError, OSError) as exc:
            shutil.rmtree(destination, ignore_errors=True)
            self._log(f"== backup FAILED: {exc} ==")
            if isinstance(exc, BackupError):
                raise
            raise BackupError(f"Backup failed: {exc}") from exc

        pruned = prune_archives(
            backup_dir,
            retention_days=self.retention_days,
            now=now,
            keep=[destination],
        )
        for path in pruned:
            self._log(f"[*] pruned {path.name}")
        self._log("== backup done ==")
        return BackupArchive(
            path=destination,
            created_at=now,
            checksums=checksums,
            pruned=tuple(pruned),
        )

    # ------------------------------------------------------------------
    def _docker(self, args: list[str], *, stdout_path: Path | None = None) -> str:
        result = self.runner.run([self.docker_bin, *args], stdout_path=stdout_path)
        try:
            result.check(f"{self.docker_bin} {args[0]}")
        except ProcessError as exc:
            raise BackupError(str(exc)) from exc
        return result.stdout

    def _container_env(self, name: str) -> str:
        value = self._docker(["exec", self.db_container, "printenv", name]).strip()
        if not value:
            raise BackupError(f"{name} is not set in container {self.db_container}.")
        return value

    def _dump_custom(self, target: Path) -> None:
        self._docker(["exec", self.db_container, "sh", "-lc", _DUMP_CUSTOM])
        try:
            self._docker(["cp", f"{self.db_container}:{CONTAINER_DUMP_PATH}", str(target)])
        finally:
            self.runner.run(
                [self.docker_bin, "exec", self.db_container, "rm", "-f", CONTAINER_DUMP_PATH]
            )

    def _dump_plain(self, target: Path) -> None:
        raw = target.with_name(f".{target.name}.raw")
        try:
            self._docker(["exec", self.db_container, "sh", "-lc", _DUMP_PLAIN], stdout_path=raw)
            with raw.open("rb") as source, gzip.open(target, "wb") as sink:
                shutil.copyfileobj(source, sink)
        finally:
            raw.unlink(missing_ok=True)

    def _log(self, message: str) -> None:
        LOGGER.info(message)
        try:
            with self.log_path.open("a", encoding="utf-8") as handle:
                handle.write(message + "\n")
        except OSError as exc:
            LOGGER.debug("Could not append to %s: %s", self.log_path, exc)


__all__ = [
    "BackupArchive",
    "BackupError",
    "BackupJob",
    "MANIFEST_NAME",
    "TIMESTAMP_FORMAT",
    "archive_timestamp",
    "prune_archives",
    "write_manifest",
]
