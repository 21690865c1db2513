"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from joplinctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.logs_dir == Path("/var/log/joplinctl")
    assert config.templates_dir == Path("/etc/joplinctl/templates")
    assert config.cron.file == Path("/etc/cron.d/joplin-stack")
    assert config.cron.renew == "5 3 * * *"
    assert config.cron.backup == "30 2 * * *"
    assert config.backups.retention_days == 14
    assert config.images.database == "postgres:14"
    assert config.database.name == "joplin"
    assert config.degraded_exit_code == 0


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "joplinctl.yml"
    cfg.write_text(
        "logs_dir: {logs}\n"
        "degraded_exit_code: 3\n"
        "backups:\n"
        "  retention_days: 30\n"
        "images:\n"
        "  app: joplin/server:3.0.1\n"
        "cron:\n"
        "  backup: '0 4 * * *'\n".format(logs=str(tmp_path / "logs"))
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.logs_dir == tmp_path / "logs"
    assert config.degraded_exit_code == 3
    assert config.backups.retention_days == 30
    assert config.images.app == "joplin/server:3.0.1"
    assert config.images.proxy == "nginx:1.27-alpine"
    assert config.cron.backup == "0 4 * * *"
    assert config.cron.renew == "5 3 * * *"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("backups:\n  retention_days: 30\n")
    env = {
        "JOPLINCTL_BACKUPS__RETENTION_DAYS": "7",
        "JOPLINCTL_CRON__FILE": str(tmp_path / "cron.d" / "joplin"),
        "JOPLINCTL_DOCKER_BIN": "/usr/local/bin/docker",
        "JOPLINCTL_DATABASE__USER": "notes",
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.backups.retention_days == 7
    assert config.cron.file == tmp_path / "cron.d" / "joplin"
    assert config.docker_bin == "/usr/local/bin/docker"
    assert config.database.user == "notes"
    assert config.database.name == "joplin"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"JOPLINCTL_DEGRADED_EXIT_CODE": "2"},
        overrides={"degraded_exit_code": 4},
    )

    assert config.degraded_exit_code == 4


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("systemctl_bin: /bin/systemctl\n")

    config = load_config(env={"JOPLINCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.systemctl_bin == "/bin/systemctl"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A non-mapping document raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_nested_keys_raise(tmp_path: Path) -> None:
    """Extra section keys produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("backups:\n  retention_days: 3\n  compression: gzip\n")

    with pytest.raises(ConfigError, match="Unknown backups configuration keys"):
        load_config(config_file=cfg, env={})


def test_malformed_cron_schedule_raises(tmp_path: Path) -> None:
    """Cron schedules need exactly five fields."""
    with pytest.raises(ConfigError, match="cron.renew must be a five-field"):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"JOPLINCTL_CRON__RENEW": "@daily"},
        )


@pytest.mark.parametrize("value", ["0", "-3"])
def test_retention_must_be_positive(tmp_path: Path, value: str) -> None:
    """A zero or negative retention window is rejected."""
    with pytest.raises(ConfigError, match="retention_days must be greater than zero"):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"JOPLINCTL_BACKUPS__RETENTION_DAYS": value},
        )


def test_degraded_exit_code_range(tmp_path: Path) -> None:
    """Exit codes outside 0-255 are rejected."""
    with pytest.raises(ConfigError, match="degraded_exit_code"):
        load_config(config_file=tmp_path / "absent.yml", env={}, overrides={"degraded_exit_code": 300})


def test_degraded_exit_code_cannot_be_parse_error_status(tmp_path: Path) -> None:
    """Status 2 is kept for command-line parse errors."""
    with pytest.raises(ConfigError, match="reserved"):
        load_config(config_file=tmp_path / "absent.yml", env={}, overrides={"degraded_exit_code": 2})
