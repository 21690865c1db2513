"""Configuration loader for joplinctl.

Tool settings (not stack parameters) are read from multiple sources:

1. Built-in defaults.
2. ``/etc/joplinctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``JOPLINCTL_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export JOPLINCTL_BACKUPS__RETENTION_DAYS=30
    export JOPLINCTL_CRON__BACKUP="0 4 * * *"

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load joplinctl configuration. Install with "
        "`pip install joplinctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "JOPLINCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class CronConfig:
    """Location and timings of the scheduled maintenance entries."""

    file: Path = Path("/etc/cron.d/joplin-stack")
    renew: str = "5 3 * * *"
    backup: str = "30 2 * * *"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"file": str(self.file), "renew": self.renew, "backup": self.backup}


@dataclass(frozen=True)
class BackupConfig:
    """Backup retention settings."""

    retention_days: int = 14

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"retention_days": self.retention_days}


@dataclass(frozen=True)
class ImagesConfig:
    """Container image references for each service."""

    app: str = "joplin/server:latest"
    database: str = "postgres:14"
    proxy: str = "nginx:1.27-alpine"
    certbot: str = "certbot/certbot:latest"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "app": self.app,
            "database": self.database,
            "proxy": self.proxy,
            "certbot": self.certbot,
        }


@dataclass(frozen=True)
class DatabaseConfig:
    """Default database identity."""

    name: str = "joplin"
    user: str = "joplin"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "user": self.user}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for joplinctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    os_release: Path
    docker_bin: str
    systemctl_bin: str
    degraded_exit_code: int
    cron: CronConfig
    backups: BackupConfig
    images: ImagesConfig
    database: DatabaseConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "os_release": str(self.os_release),
            "docker_bin": self.docker_bin,
            "systemctl_bin": self.systemctl_bin,
            "degraded_exit_code": self.degraded_exit_code,
            "cron": self.cron.to_dict(),
            "backups": self.backups.to_dict(),
            "images": self.images.to_dict(),
            "database": self.database.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/joplinctl/config.yml",
    "logs_dir": "/var/log/joplinctl",
    "templates_dir": "/etc/joplinctl/templates",
    "os_release": "/etc/os-release",
    "docker_bin": "docker",
    "systemctl_bin": "systemctl",
    "degraded_exit_code": 0,
    "cron": {
        "file": "/etc/cron.d/joplin-stack",
        "renew": "5 3 * * *",
        "backup": "30 2 * * *",
    },
    "backups": {
        "retention_days": 14,
    },
    "images": {
        "app": "joplin/server:latest",
        "database": "postgres:14",
        "proxy": "nginx:1.27-alpine",
        "certbot": "certbot/certbot:latest",
    },
    "database": {
        "name": "joplin",
        "user": "joplin",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    "cron": {"file", "renew", "backup"},
    "backups": {"retention_days"},
    "images": {"app", "database", "proxy", "certbot"},
    "database": {"name", "user"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    cron_map = _as_dict(raw.get("cron"), "cron")
    for key in ("renew", "backup"):
        value = cron_map.get(key)
        if value is not None and len(str(value).split()) != 5:
            raise ConfigError(
                f"cron.{key} must be a five-field cron schedule. Got {value!r}."
            )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    cron_mapping = _as_dict(raw.get("cron"), "cron")
    cron = CronConfig(
        file=_to_path(cron_mapping.get("file", "/etc/cron.d/joplin-stack")),
        renew=str(cron_mapping.get("renew", "5 3 * * *")),
        backup=str(cron_mapping.get("backup", "30 2 * * *")),
    )

    backups_mapping = _as_dict(raw.get("backups"), "backups")
    retention_days = _expect_int(
        backups_mapping.get("retention_days"), "backups.retention_days", default=14
    )
    if retention_days <= 0:
        raise ConfigError("backups.retention_days must be greater than zero.")

    images_mapping = _as_dict(raw.get("images"), "images")
    defaults = ImagesConfig()
    images = ImagesConfig(
        app=_expect_non_empty(images_mapping.get("app", defaults.app), "images.app"),
        database=_expect_non_empty(
            images_mapping.get("database", defaults.database), "images.database"
        ),
        proxy=_expect_non_empty(images_mapping.get("proxy", defaults.proxy), "images.proxy"),
        certbot=_expect_non_empty(
            images_mapping.get("certbot", defaults.certbot), "images.certbot"
        ),
    )

    database_mapping = _as_dict(raw.get("database"), "database")
    database = DatabaseConfig(
        name=_expect_non_empty(database_mapping.get("name", "joplin"), "database.name"),
        user=_expect_non_empty(database_mapping.get("user", "joplin"), "database.user"),
    )

    degraded_exit_code = _expect_int(
        raw.get("degraded_exit_code"), "degraded_exit_code", default=0
    )
    if not 0 <= degraded_exit_code <= 255:
        raise ConfigError("degraded_exit_code must be between 0 and 255.")
    if degraded_exit_code == 2:
        raise ConfigError("degraded_exit_code 2 is reserved for command-line parse errors.")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        os_release=_to_path(raw.get("os_release")),
        docker_bin=str(raw.get("docker_bin", "docker")),
        systemctl_bin=str(raw.get("systemctl_bin", "systemctl")),
        degraded_exit_code=degraded_exit_code,
        cron=cron,
        backups=BackupConfig(retention_days=retention_days),
        images=images,
        database=database,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty(value: object, label: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigError(f"{label} must be a non-empty string.")
    return text


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "ConfigError",
    "CronConfig",
    "DatabaseConfig",
    "ImagesConfig",
    "load_config",
]
