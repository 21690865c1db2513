"""Render the stack's configuration artifacts from validated parameters.

All artifacts are derived from one :class:`~joplinctl.params.StackParameters`
value and replaced wholesale on every render, so a second render with changed
parameters leaves nothing behind from the first.
"""
from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .config import CronConfig
from .layout import StackLayout
from .params import StackParameters
from .templates import TemplateEngine, TemplateRenderError, write_atomic
from .topology import APP_PORT, DB_CONTAINER, LETSENCRYPT_MOUNT, WEBROOT_MOUNT, build_topology

LOGGER = logging.getLogger(__name__)

VHOST_TEMPLATE = "nginx/joplin.conf.j2"
COMPOSE_WRAPPER_TEMPLATE = "scripts/compose.sh.j2"
BACKUP_SCRIPT_TEMPLATE = "scripts/backup-joplin.sh.j2"
CRON_TEMPLATE = "cron/joplin-stack.j2"
CLIENT_MAX_BODY_SIZE = "100m"

_PLAIN_VALUE = re.compile(r"[A-Za-z0-9_@%+=:,./\-]*")


class MaterializeError(RuntimeError):
    """Raised when an artifact cannot be rendered or written."""


@dataclass(slots=True)
class MaterializeResult:
    """Files written by :meth:`ConfigMaterializer.render`."""

    written: list[Path] = field(default_factory=list)
    changed: list[Path] = field(default_factory=list)


def _flag(value: bool) -> str:
    return "1" if value else "0"


def env_entries(params: StackParameters, layout: StackLayout) -> dict[str, str]:
    """Return every ``.env`` key and value, in file order."""
    return {
        "DOMAIN": params.domain,
        "LE_EMAIL": params.le_email,
        "USE_LETSENCRYPT": _flag(params.use_letsencrypt),
        "DB_NAME": params.db_name,
        "DB_USER": params.db_user,
        "DB_PASS": params.db_pass,
        "MAILER_ENABLED": _flag(params.mailer_enabled),
        "NOREPLY_EMAIL": params.noreply_email,
        "NOREPLY_NAME": params.noreply_name,
        "SMTP_MODE": params.smtp_mode.value,
        "SMTP_HOST": params.smtp_host,
        "SMTP_PORT": str(params.smtp_port),
        "SMTP_SECURITY": params.smtp_security.value,
        "SMTP_USER": params.smtp_user,
        "SMTP_PASS": params.smtp_pass,
        "JOPLIN_IMAGE": params.images.app,
        "PG_IMAGE": params.images.database,
        "NGINX_IMAGE": params.images.proxy,
        "CERTBOT_IMAGE": params.images.certbot,
        "STACK_DIR": str(layout.root),
        "NGINX_DIR": str(layout.nginx_dir),
        "WEBROOT_DIR": str(layout.webroot),
        "LE_DIR": str(layout.letsencrypt_dir),
        "DATA_DIR": str(layout.data_dir),
        "BACKUP_DIR": str(layout.backup_dir),
    }


def quote_env_value(value: str) -> str:
    """Quote *value* so compose reads it literally.

    Single quotes disable interpolation in compose env files; values that
    themselves contain a single quote fall back to escaped double quotes.
    """
    if _PLAIN_VALUE.fullmatch(value):
        return value
    if "'" not in value:
        return f"'{value}'"
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "$$")
    return f'"{escaped}"'


def format_env_file(entries: Mapping[str, str]) -> str:
    """Return ``.env`` content for *entries*."""
    lines = ["# Managed by joplinctl. Regenerated on every deploy."]
    lines.extend(f"{key}={quote_env_value(value)}" for key, value in entries.items())
    return "\n".join(lines) + "\n"


def parse_env_file(text: str) -> dict[str, str]:
    """Parse ``.env`` content written by :func:`format_env_file`."""
    entries: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        if len(value) >= 2 and value[0] == value[-1] == "'":
            value = value[1:-1]
        elif len(value) >= 2 and value[0] == value[-1] == '"':
            value = (
                value[1:-1].replace("$$", "$").replace('\\"', '"').replace("\\\\", "\\")
            )
        entries[key] = value
    return entries


@dataclass(slots=True)
class ConfigMaterializer:
    """Write ``.env``, the nginx vhost, the compose file and the helper scripts."""

    templates: TemplateEngine
    docker_bin: str = "docker"
    retention_days: int = 14

    def render(self, params: StackParameters, layout: StackLayout) -> MaterializeResult:
        """Create the layout directories and (re)write every artifact."""
        result = MaterializeResult()
        try:
            for directory in layout.directories():
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise MaterializeError(f"Failed to create stack directories: {exc}") from exc

        self._write(
            result,
            layout.env_file,
            format_env_file(env_entries(params, layout)),
            mode=0o600,
        )
        self._render(
            result,
            VHOST_TEMPLATE,
            layout.vhost_file,
            {
                "domain": params.domain,
                "webroot_mount": WEBROOT_MOUNT,
                "certificate_dir": f"{LETSENCRYPT_MOUNT}/live/{params.domain}",
                "app_port": APP_PORT,
                "client_max_body_size": CLIENT_MAX_BODY_SIZE,
            },
            mode=0o644,
        )
        self._write(result, layout.compose_file, build_topology().to_yaml(), mode=0o644)
        self._render(
            result,
            COMPOSE_WRAPPER_TEMPLATE,
            layout.compose_wrapper,
            {"docker_bin": self.docker_bin},
            mode=0o755,
        )
        self._render(
            result,
            BACKUP_SCRIPT_TEMPLATE,
            layout.backup_script,
            {
                "docker_bin": self.docker_bin,
                "db_container": DB_CONTAINER,
                "retention_days": self.retention_days,
            },
            mode=0o750,
        )
        LOGGER.debug("Materialised %d artifacts under %s", len(result.written), layout.root)
        return result

    def render_cron(
        self,
        params: StackParameters,
        layout: StackLayout,
        schedule: CronConfig,
    ) -> str | None:
        """Return the cron file body, or ``None`` when nothing should be scheduled."""
        renew = params.use_letsencrypt
        backup = params.enable_backup
        if not params.install_cron or not (renew or backup):
            return None
        return self.templates.render_to_string(
            CRON_TEMPLATE,
            {
                "renew": renew,
                "backup": backup,
                "renew_schedule": schedule.renew,
                "backup_schedule": schedule.backup,
                "stack_dir": layout.root,
                "compose_wrapper": layout.compose_wrapper,
                "backup_script": layout.backup_script,
                "backup_dir": layout.backup_dir,
            },
        )

    # ------------------------------------------------------------------
    def _render(
        self,
        result: MaterializeResult,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int,
    ) -> None:
        try:
            changed = self.templates.render_to_path(template_name, destination, context, mode=mode)
        except TemplateRenderError as exc:
            raise MaterializeError(str(exc)) from exc
        result.written.append(destination)
        if changed:
            result.changed.append(destination)

    def _write(
        self,
        result: MaterializeResult,
        destination: Path,
        content: str,
        *,
        mode: int,
    ) -> None:
        try:
            unchanged = (
                destination.exists() and destination.read_text(encoding="utf-8") == content
            )
            if unchanged:
                os.chmod(destination, mode)
            else:
                write_atomic(destination, content, mode=mode)
        except OSError as exc:
            raise MaterializeError(f"Failed to write {destination}: {exc}") from exc
        result.written.append(destination)
        if not unchanged:
            result.changed.append(destination)


__all__ = [
    "ConfigMaterializer",
    "MaterializeError",
    "MaterializeResult",
    "env_entries",
    "format_env_file",
    "parse_env_file",
    "quote_env_value",
]
