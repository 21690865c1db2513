"""Typer-powered command line for ``joplinctl``.

``deploy`` provisions the whole stack on the local host, ``render`` only
(re)writes its configuration, and ``backup``/``renew`` are the maintenance
actions the generated cron entries perform.
"""
from __future__ import annotations

import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from . import __version__
from .backups import BackupError, BackupJob
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .host import HostProbe
from .layout import DEFAULT_STACK_DIR, StackLayout, derive_layout
from .logging import OperationScope, StructuredLogger
from .materialize import ConfigMaterializer, MaterializeError
from .orchestrator import BringUpOrchestrator, Outcome, ProvisionReport
from .params import (
    DEFAULT_NOREPLY_EMAIL,
    DEFAULT_NOREPLY_NAME,
    DEFAULT_SMTP_PORT,
    StackImages,
    StackParameters,
    UsageError,
    build_parameters,
)
from .process import ExternalProcess, SubprocessRunner
from .providers import (
    CertbotProvider,
    CertificateError,
    ComposeError,
    ComposeInvoker,
    CronProvider,
    NginxError,
    NginxProvider,
)
from .templates import TemplateEngine
from .topology import DB_CONTAINER

console = Console()
err_console = Console(stderr=True)

PARSE_ERROR_STATUS = 2

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to joplinctl's YAML config file.",
)

STACK_DIR_OPTION = typer.Option(
    DEFAULT_STACK_DIR,
    "--stack-dir",
    file_okay=False,
    help="Root directory of the stack.",
)

DOMAIN_OPTION = typer.Option(None, "--domain", help="Public FQDN of the server (required).")
DB_PASS_OPTION = typer.Option(
    None,
    "--db-pass",
    help="Database password (a random one is generated when omitted).",
)
LE_EMAIL_OPTION = typer.Option(
    None,
    "--le-email",
    help="Let's Encrypt account email (required unless --no-letsencrypt).",
)
NO_LETSENCRYPT_OPTION = typer.Option(
    False,
    "--no-letsencrypt",
    help="Skip certificate issuance; place certificates by hand.",
)
SMTP_MODE_OPTION = typer.Option("none", "--smtp-mode", help="none|relay|mailbox.")
SMTP_HOST_OPTION = typer.Option(None, "--smtp-host", help="SMTP server host.")
SMTP_PORT_OPTION = typer.Option(DEFAULT_SMTP_PORT, "--smtp-port", help="SMTP server port.")
SMTP_SECURITY_OPTION = typer.Option(
    "starttls",
    "--smtp-security",
    help="starttls|tls|none.",
)
SMTP_USER_OPTION = typer.Option(None, "--smtp-user", help="SMTP login (mailbox mode).")
SMTP_PASS_OPTION = typer.Option(None, "--smtp-pass", help="SMTP password (mailbox mode).")
NOREPLY_EMAIL_OPTION = typer.Option(
    DEFAULT_NOREPLY_EMAIL,
    "--noreply-email",
    help="Sender address for application mail.",
)
NOREPLY_NAME_OPTION = typer.Option(
    DEFAULT_NOREPLY_NAME,
    "--noreply-name",
    help="Sender display name for application mail.",
)
ENABLE_BACKUP_OPTION = typer.Option(
    False,
    "--enable-backup",
    help="Schedule the nightly database and configuration backup.",
)
NO_CRON_OPTION = typer.Option(
    False,
    "--no-cron",
    help="Do not touch the cron file.",
)


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Self-hosted Joplin Server provisioning CLI.

        Installs the container runtime when needed, writes the stack
        configuration, starts PostgreSQL, Joplin Server and nginx, obtains a
        Let's Encrypt certificate, and schedules renewals and backups.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    runner: ExternalProcess


def _fatal(message: str, *, rc: int = ExitCode.FAILURE) -> NoReturn:
    err_console.print(f"ERROR: {message}", markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(code=rc)


def _echo(message: str = "") -> None:
    console.print(message, markup=False, highlight=False, soft_wrap=True)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        _fatal(str(exc))
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        runner=SubprocessRunner(),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the joplinctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            _echo(f"joplinctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _usage_error(ctx: typer.Context, message: str) -> NoReturn:
    err_console.print(f"ERROR: {message}", markup=False, highlight=False, soft_wrap=True)
    err_console.print(ctx.get_usage(), markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(code=ExitCode.FAILURE)


def _parameters(ctx: typer.Context, runtime: RuntimeContext, **raw: object) -> StackParameters:
    """Validate command-line input; nothing on the host has been touched yet."""
    try:
        return build_parameters(
            images=StackImages.from_config(runtime.config.images),
            database=runtime.config.database,
            **raw,  # type: ignore[arg-type]
        )
    except UsageError as exc:
        _usage_error(ctx, str(exc))


def _parameter_args(params: StackParameters) -> dict[str, object]:
    return {
        "domain": params.domain,
        "db_pass": params.db_pass,
        "db_pass_generated": params.db_pass_generated,
        "le_email": params.le_email,
        "use_letsencrypt": params.use_letsencrypt,
        "smtp_mode": params.smtp_mode.value,
        "smtp_host": params.smtp_host,
        "smtp_port": params.smtp_port,
        "smtp_security": params.smtp_security.value,
        "smtp_user": params.smtp_user,
        "smtp_pass": params.smtp_pass,
        "enable_backup": params.enable_backup,
        "install_cron": params.install_cron,
        "stack_dir": params.stack_dir,
    }


def _materializer(runtime: RuntimeContext) -> ConfigMaterializer:
    return ConfigMaterializer(
        templates=runtime.templates,
        docker_bin=runtime.config.docker_bin,
        retention_days=runtime.config.backups.retention_days,
    )


def _print_banner(report: ProvisionReport) -> None:
    params = report.params
    layout = report.layout
    _echo()
    if report.outcome is Outcome.DONE_DEGRADED:
        _echo("Deployment complete (certificate pending).")
    else:
        _echo("Deployment complete.")
    _echo(f"   URL: https://{params.domain}")
    _echo(f"   Stack dir: {layout.root}")
    _echo(f"   Compose: {layout.compose_file}")
    _echo(f"   LE certs: {layout.certificate_dir(params.domain)}/ (if enabled)")
    _echo(
        f"   Backup script: {layout.backup_script} "
        f"(cron installed: {int(report.cron_installed)}, "
        f"backup enabled: {int(params.enable_backup)})"
    )


@app.command()
def deploy(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    db_pass: str | None = DB_PASS_OPTION,
    le_email: str | None = LE_EMAIL_OPTION,
    no_letsencrypt: bool = NO_LETSENCRYPT_OPTION,
    smtp_mode: str = SMTP_MODE_OPTION,
    smtp_host: str | None = SMTP_HOST_OPTION,
    smtp_port: int = SMTP_PORT_OPTION,
    smtp_security: str = SMTP_SECURITY_OPTION,
    smtp_user: str | None = SMTP_USER_OPTION,
    smtp_pass: str | None = SMTP_PASS_OPTION,
    noreply_email: str = NOREPLY_EMAIL_OPTION,
    noreply_name: str = NOREPLY_NAME_OPTION,
    enable_backup: bool = ENABLE_BACKUP_OPTION,
    no_cron: bool = NO_CRON_OPTION,
    stack_dir: Path = STACK_DIR_OPTION,
) -> None:
    """Provision the Joplin Server stack on this host."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    params = _parameters(
        ctx,
        runtime,
        domain=domain,
        db_pass=db_pass,
        le_email=le_email,
        use_letsencrypt=not no_letsencrypt,
        smtp_mode=smtp_mode,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_security=smtp_security,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        noreply_email=noreply_email,
        noreply_name=noreply_name,
        enable_backup=enable_backup,
        install_cron=not no_cron,
        stack_dir=stack_dir,
    )
    if params.db_pass_generated:
        _echo(f"Generated DB password: {params.db_pass}")

    with runtime.logger.operation(
        "deploy",
        args=_parameter_args(params),
        target={"kind": "stack", "domain": params.domain, "stack_dir": params.stack_dir},
    ) as op:
        probe = HostProbe(
            runtime.runner,
            docker_bin=config.docker_bin,
            systemctl_bin=config.systemctl_bin,
            os_release=config.os_release,
        )
        orchestrator = BringUpOrchestrator(
            params=params,
            probe=probe,
            materializer=_materializer(runtime),
            compose=ComposeInvoker(runtime.runner, docker_bin=config.docker_bin),
            cron=CronProvider(
                runtime.runner,
                cron_file=config.cron.file,
                systemctl_bin=config.systemctl_bin,
            ),
            schedule=config.cron,
            op=op,
            notify=_echo,
        )
        report = orchestrator.run()
        context = report.to_dict()

        if report.outcome is Outcome.ABORTED:
            reason = report.abort_reason or "Provisioning aborted."
            op.error(reason, rc=ExitCode.FAILURE, context=context)
            _fatal(reason)

        for message in report.messages:
            _echo(message)
        _print_banner(report)

        if report.outcome is Outcome.DONE_DEGRADED:
            rc = config.degraded_exit_code
            op.warning(
                "Stack running without a trusted certificate.",
                warnings=[report.cert_error or "certificate issuance failed"],
                changed=1,
                context=context,
                rc=rc,
            )
            if rc:
                raise typer.Exit(code=rc)
            return
        op.success("Stack provisioned.", changed=1, context=context)


@app.command()
def render(
    ctx: typer.Context,
    domain: str | None = DOMAIN_OPTION,
    db_pass: str | None = DB_PASS_OPTION,
    le_email: str | None = LE_EMAIL_OPTION,
    no_letsencrypt: bool = NO_LETSENCRYPT_OPTION,
    smtp_mode: str = SMTP_MODE_OPTION,
    smtp_host: str | None = SMTP_HOST_OPTION,
    smtp_port: int = SMTP_PORT_OPTION,
    smtp_security: str = SMTP_SECURITY_OPTION,
    smtp_user: str | None = SMTP_USER_OPTION,
    smtp_pass: str | None = SMTP_PASS_OPTION,
    noreply_email: str = NOREPLY_EMAIL_OPTION,
    noreply_name: str = NOREPLY_NAME_OPTION,
    stack_dir: Path = STACK_DIR_OPTION,
) -> None:
    """Write the stack configuration without installing or starting anything."""
    runtime = _get_runtime(ctx)
    params = _parameters(
        ctx,
        runtime,
        domain=domain,
        db_pass=db_pass,
        le_email=le_email,
        use_letsencrypt=not no_letsencrypt,
        smtp_mode=smtp_mode,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_security=smtp_security,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        noreply_email=noreply_email,
        noreply_name=noreply_name,
        stack_dir=stack_dir,
    )
    if params.db_pass_generated:
        _echo(f"Generated DB password: {params.db_pass}")

    layout = derive_layout(params.stack_dir)
    with runtime.logger.operation(
        "render",
        args=_parameter_args(params),
        target={"kind": "stack", "domain": params.domain, "stack_dir": layout.root},
    ) as op:
        try:
            result = _materializer(runtime).render(params, layout)
        except MaterializeError as exc:
            op.error(str(exc), rc=ExitCode.FAILURE)
            _fatal(str(exc))
        for path in result.written:
            status = "updated" if path in result.changed else "unchanged"
            op.add_step("config.write", detail={"path": path, "status": status})
            _echo(f"[{status}] {path}")
        op.success("Configuration rendered.", changed=len(result.changed))


def _require_stack(layout: StackLayout) -> None:
    if not layout.env_file.exists():
        _fatal(f"{layout.env_file} not found; run `joplinctl deploy` first.")


@app.command()
def backup(
    ctx: typer.Context,
    stack_dir: Path = STACK_DIR_OPTION,
) -> None:
    """Dump the database and snapshot the stack configuration."""
    runtime = _get_runtime(ctx)
    layout = derive_layout(stack_dir)
    _require_stack(layout)
    with runtime.logger.operation(
        "backup",
        args={"stack_dir": layout.root},
        target={"kind": "stack", "stack_dir": layout.root},
    ) as op:
        job = BackupJob(
            runtime.runner,
            layout,
            docker_bin=runtime.config.docker_bin,
            db_container=DB_CONTAINER,
            retention_days=runtime.config.backups.retention_days,
        )
        try:
            archive = job.run()
        except BackupError as exc:
            op.error(str(exc), rc=ExitCode.FAILURE)
            _fatal(str(exc))
        op.add_step("backup.archive", detail={"path": archive.path})
        if archive.pruned:
            op.add_step("backup.prune", detail=[path.name for path in archive.pruned])
        _echo(f"Backup written to {archive.path}")
        for path in archive.pruned:
            _echo(f"Pruned {path.name}")
        op.success(
            "Backup created.",
            changed=1 + len(archive.pruned),
            context={"path": archive.path, "files": sorted(archive.checksums)},
        )


@app.command()
def renew(
    ctx: typer.Context,
    stack_dir: Path = STACK_DIR_OPTION,
) -> None:
    """Renew Let's Encrypt certificates and reload nginx."""
    runtime = _get_runtime(ctx)
    layout = derive_layout(stack_dir)
    _require_stack(layout)
    with runtime.logger.operation(
        "renew",
        args={"stack_dir": layout.root},
        target={"kind": "stack", "stack_dir": layout.root},
    ) as op:
        compose = ComposeInvoker(runtime.runner, layout, docker_bin=runtime.config.docker_bin)
        try:
            CertbotProvider(compose).renew()
            op.add_step("cert.renew")
            NginxProvider(compose).reload()
            op.add_step("proxy.reload")
        except CertificateError as exc:
            _command_error(op, f"{exc} {exc.diagnostic}".strip())
        except (ComposeError, NginxError) as exc:
            _command_error(op, str(exc))
        _echo("Certificates renewed; nginx reloaded.")
        op.success("Certificates renewed.", changed=1)


def _command_error(op: OperationScope, message: str, *, rc: int = ExitCode.FAILURE) -> NoReturn:
    """Emit a structured error and terminate the command."""
    op.error(message, rc=rc)
    _fatal(message, rc=rc)


def main() -> None:
    """Console script entry point.

    Parse errors leave the app with status 2 after usage text is printed; they
    are usage errors here and exit with status 1 like every other invalid
    invocation.
    """
    try:
        app()
    except SystemExit as exc:
        if exc.code == PARSE_ERROR_STATUS:
            raise SystemExit(ExitCode.FAILURE) from None
        raise


__all__ = ["app", "main"]
