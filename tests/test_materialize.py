"""Tests for configuration materialisation."""
from __future__ import annotations

import stat
from pathlib import Path

import pytest
import yaml

from joplinctl.config import CronConfig
from joplinctl.layout import derive_layout
from joplinctl.materialize import (
    ConfigMaterializer,
    env_entries,
    format_env_file,
    parse_env_file,
    quote_env_value,
)
from joplinctl.params import build_parameters
from joplinctl.templates import TemplateEngine


@pytest.fixture()
def materializer() -> ConfigMaterializer:
    """Return a materializer using the packaged templates."""
    return ConfigMaterializer(TemplateEngine.with_overrides(None))


def _params(tmp_path: Path, **overrides: object):
    values: dict[str, object] = {
        "domain": "notes.example.com",
        "db_pass": "pw-1",
        "le_email": "ops@example.com",
        "stack_dir": tmp_path / "stack",
    }
    values.update(overrides)
    return build_parameters(**values)  # type: ignore[arg-type]


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def test_render_writes_every_artifact(tmp_path: Path, materializer: ConfigMaterializer) -> None:
    """All artifacts and directories exist with the expected permissions."""
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)

    result = materializer.render(params, layout)

    for directory in layout.directories():
        assert directory.is_dir()
    assert set(result.written) == {
        layout.env_file,
        layout.vhost_file,
        layout.compose_file,
        layout.compose_wrapper,
        layout.backup_script,
    }
    assert _mode(layout.env_file) == 0o600
    assert _mode(layout.compose_wrapper) == 0o755
    assert _mode(layout.backup_script) == 0o750
    assert _mode(layout.vhost_file) == 0o644


def test_env_file_reflects_parameters(tmp_path: Path, materializer: ConfigMaterializer) -> None:
    """The .env keys carry the parameter values."""
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)
    materializer.render(params, layout)

    entries = parse_env_file(layout.env_file.read_text())

    assert entries["DOMAIN"] == "notes.example.com"
    assert entries["DB_PASS"] == "pw-1"
    assert entries["USE_LETSENCRYPT"] == "1"
    assert entries["MAILER_ENABLED"] == "0"
    assert entries["DATA_DIR"] == str(layout.data_dir)
    assert entries["PG_IMAGE"] == "postgres:14"


def test_rerender_replaces_values_without_residue(
    tmp_path: Path, materializer: ConfigMaterializer
) -> None:
    """A second render with new values leaves no trace of the first."""
    first = _params(tmp_path)
    layout = derive_layout(first.stack_dir)
    materializer.render(first, layout)

    second = _params(
        tmp_path,
        domain="sync.example.org",
        db_pass="pw-2",
        smtp_mode="relay",
        smtp_host="relay.example.org",
    )
    result = materializer.render(second, layout)

    env_text = layout.env_file.read_text()
    vhost = layout.vhost_file.read_text()
    assert "notes.example.com" not in env_text
    assert "pw-1" not in env_text
    assert "notes.example.com" not in vhost
    assert parse_env_file(env_text) == env_entries(second, layout)
    assert layout.env_file in result.changed
    assert layout.compose_file not in result.changed


def test_render_is_idempotent(tmp_path: Path, materializer: ConfigMaterializer) -> None:
    """Rendering identical parameters twice changes nothing."""
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)
    materializer.render(params, layout)

    result = materializer.render(params, layout)

    assert result.changed == []


def test_mailer_flag_follows_mode(tmp_path: Path, materializer: ConfigMaterializer) -> None:
    """Relay and mailbox modes enable the mailer."""
    params = _params(
        tmp_path,
        smtp_mode="mailbox",
        smtp_host="smtp.example.com",
        smtp_user="joplin",
        smtp_pass="mail pass",
    )
    layout = derive_layout(params.stack_dir)
    materializer.render(params, layout)

    entries = parse_env_file(layout.env_file.read_text())
    assert entries["MAILER_ENABLED"] == "1"
    assert entries["SMTP_PASS"] == "mail pass"


def test_vhost_names_domain_in_both_servers(
    tmp_path: Path, materializer: ConfigMaterializer
) -> None:
    """Both the plain and TLS server blocks use the domain."""
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)
    materializer.render(params, layout)

    vhost = layout.vhost_file.read_text()
    assert vhost.count("server_name notes.example.com;") == 2
    assert "/etc/letsencrypt/live/notes.example.com/fullchain.pem" in vhost
    assert "proxy_pass http://app:22300;" in vhost
    assert "client_max_body_size 100m;" in vhost


def test_compose_file_defines_four_services(
    tmp_path: Path, materializer: ConfigMaterializer
) -> None:
    """The compose document lists db, app, nginx and certbot."""
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)
    materializer.render(params, layout)

    document = yaml.safe_load(layout.compose_file.read_text())
    assert list(document["services"]) == ["db", "app", "nginx", "certbot"]
    assert document["services"]["certbot"]["profiles"] == ["certs"]


def test_backup_script_uses_retention(tmp_path: Path) -> None:
    """The backup script embeds the configured retention."""
    materializer = ConfigMaterializer(TemplateEngine.with_overrides(None), retention_days=30)
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)
    materializer.render(params, layout)

    script = layout.backup_script.read_text()
    assert "RETENTION_DAYS=30" in script
    assert '-mmin +"$((RETENTION_DAYS * 1440))"' in script
    assert "-mtime" not in script
    assert "joplin_postgres" in script


def test_template_override_directory(tmp_path: Path) -> None:
    """Templates in the override directory shadow the packaged ones."""
    override = tmp_path / "templates" / "nginx"
    override.mkdir(parents=True)
    (override / "joplin.conf.j2").write_text("# custom {{ domain }}\n")
    materializer = ConfigMaterializer(TemplateEngine.with_overrides(tmp_path / "templates"))
    params = _params(tmp_path)
    layout = derive_layout(params.stack_dir)

    materializer.render(params, layout)

    assert layout.vhost_file.read_text() == "# custom notes.example.com\n"


@pytest.mark.parametrize(
    ("use_letsencrypt", "enable_backup", "expect_renew", "expect_backup"),
    [
        (True, False, True, False),
        (False, True, False, True),
        (True, True, True, True),
    ],
)
def test_cron_lines_follow_toggles(
    tmp_path: Path,
    materializer: ConfigMaterializer,
    use_letsencrypt: bool,
    enable_backup: bool,
    expect_renew: bool,
    expect_backup: bool,
) -> None:
    """Renewal and backup entries appear only when their feature is on."""
    params = _params(
        tmp_path,
        use_letsencrypt=use_letsencrypt,
        enable_backup=enable_backup,
    )
    layout = derive_layout(params.stack_dir)

    content = materializer.render_cron(params, layout, CronConfig())

    assert content is not None
    assert ("certbot renew" in content) is expect_renew
    assert ("5 3 * * * root" in content) is expect_renew
    assert ("30 2 * * * root bash" in content) is expect_backup


def test_cron_none_when_nothing_to_schedule(
    tmp_path: Path, materializer: ConfigMaterializer
) -> None:
    """No certificates and no backups means no cron file."""
    params = _params(tmp_path, use_letsencrypt=False)

    assert materializer.render_cron(params, derive_layout(params.stack_dir), CronConfig()) is None


def test_cron_none_when_disabled(tmp_path: Path, materializer: ConfigMaterializer) -> None:
    """--no-cron suppresses the cron file entirely."""
    params = _params(tmp_path, enable_backup=True, install_cron=False)

    assert materializer.render_cron(params, derive_layout(params.stack_dir), CronConfig()) is None


def test_cron_uses_configured_schedule(tmp_path: Path, materializer: ConfigMaterializer) -> None:
    """Configured timings replace the defaults."""
    params = _params(tmp_path, enable_backup=True)
    content = materializer.render_cron(
        params,
        derive_layout(params.stack_dir),
        CronConfig(renew="0 4 * * 1", backup="15 1 * * *"),
    )

    assert content is not None
    assert "0 4 * * 1 root cd" in content
    assert "15 1 * * * root bash" in content


@pytest.mark.parametrize(
    "value",
    ["plain-value_1", "with space", "dollar$sign", "it's", "quote\"and'both$"],
)
def test_env_values_read_back_literally(value: str) -> None:
    """Quoted values parse back to the original text."""
    text = format_env_file({"KEY": value})

    assert parse_env_file(text) == {"KEY": value}


def test_special_characters_are_quoted() -> None:
    """Values compose could interpolate are single-quoted."""
    assert quote_env_value("ab$c") == "'ab$c'"
    assert quote_env_value("abc") == "abc"
