"""Validated stack parameters.

:func:`build_parameters` is the only way to obtain a :class:`StackParameters`;
every invariant is checked there, before the workflow touches the host.
"""
from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import DatabaseConfig, ImagesConfig
from .layout import DEFAULT_STACK_DIR

PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()_+=-"
PASSWORD_LENGTH = 24

DEFAULT_SMTP_PORT = 587
DEFAULT_NOREPLY_EMAIL = "noreply@localhost"
DEFAULT_NOREPLY_NAME = "Joplin Server"


class UsageError(ValueError):
    """Raised when command-line input is missing or inconsistent."""


class MailMode(str, Enum):
    """How the application server sends email."""

    NONE = "none"
    RELAY = "relay"
    MAILBOX = "mailbox"


class SmtpSecurity(str, Enum):
    """Transport security used for the SMTP connection."""

    STARTTLS = "starttls"
    TLS = "tls"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class StackImages:
    """Image references for the four services."""

    app: str = "joplin/server:latest"
    database: str = "postgres:14"
    proxy: str = "nginx:1.27-alpine"
    certbot: str = "certbot/certbot:latest"

    @classmethod
    def from_config(cls, images: ImagesConfig) -> StackImages:
        """Build image references from the tool configuration."""
        return cls(
            app=images.app,
            database=images.database,
            proxy=images.proxy,
            certbot=images.certbot,
        )


@dataclass(frozen=True, slots=True)
class StackParameters:
    """Immutable, validated inputs for one provisioning run."""

    domain: str
    db_pass: str
    le_email: str = ""
    use_letsencrypt: bool = True
    smtp_mode: MailMode = MailMode.NONE
    smtp_host: str = ""
    smtp_port: int = DEFAULT_SMTP_PORT
    smtp_security: SmtpSecurity = SmtpSecurity.STARTTLS
    smtp_user: str = ""
    smtp_pass: str = ""
    noreply_email: str = DEFAULT_NOREPLY_EMAIL
    noreply_name: str = DEFAULT_NOREPLY_NAME
    db_name: str = "joplin"
    db_user: str = "joplin"
    db_pass_generated: bool = False
    images: StackImages = field(default_factory=StackImages)
    stack_dir: Path = DEFAULT_STACK_DIR
    enable_backup: bool = False
    install_cron: bool = True

    @property
    def mailer_enabled(self) -> bool:
        """Return ``True`` when the application should send mail."""
        return self.smtp_mode in (MailMode.RELAY, MailMode.MAILBOX)

    @property
    def backup_scheduled(self) -> bool:
        """Return ``True`` when a cron backup entry will be installed."""
        return self.enable_backup and self.install_cron


def generate_db_password(length: int = PASSWORD_LENGTH) -> str:
    """Return a random secret drawn from :data:`PASSWORD_ALPHABET`."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def validate_domain(value: str) -> str:
    """Validate and normalise a domain/FQDN."""
    normalised = value.strip().lower()
    if not normalised:
        raise UsageError("--domain is required.")
    if len(normalised) > 253:
        raise UsageError("Domain must be 253 characters or fewer.")
    if normalised.startswith(("-", ".")) or normalised.endswith(("-", ".")):
        raise UsageError("Domain cannot start or end with a hyphen or dot.")
    if not re.fullmatch(r"[a-z0-9.-]+", normalised):
        raise UsageError("Domain may contain letters, numbers, dots, and hyphens.")
    return normalised


def _parse_mode(value: str | MailMode) -> MailMode:
    try:
        return MailMode(str(getattr(value, "value", value)).strip().lower())
    except ValueError as exc:
        raise UsageError("--smtp-mode must be none|relay|mailbox.") from exc


def _parse_security(value: str | SmtpSecurity) -> SmtpSecurity:
    try:
        return SmtpSecurity(str(getattr(value, "value", value)).strip().lower())
    except ValueError as exc:
        raise UsageError("--smtp-security must be starttls|tls|none.") from exc


def build_parameters(
    *,
    domain: str | None,
    db_pass: str | None = None,
    le_email: str | None = None,
    use_letsencrypt: bool = True,
    smtp_mode: str | MailMode = MailMode.NONE,
    smtp_host: str | None = None,
    smtp_port: int = DEFAULT_SMTP_PORT,
    smtp_security: str | SmtpSecurity = SmtpSecurity.STARTTLS,
    smtp_user: str | None = None,
    smtp_pass: str | None = None,
    noreply_email: str = DEFAULT_NOREPLY_EMAIL,
    noreply_name: str = DEFAULT_NOREPLY_NAME,
    enable_backup: bool = False,
    install_cron: bool = True,
    stack_dir: Path | str = DEFAULT_STACK_DIR,
    images: StackImages | None = None,
    database: DatabaseConfig | None = None,
) -> StackParameters:
    """Validate raw inputs and return :class:`StackParameters`.

    Raises :class:`UsageError` for any missing or inconsistent combination. A
    database password is generated when none is supplied.
    """
    normalised_domain = validate_domain(domain or "")
    email = (le_email or "").strip()
    if use_letsencrypt and not email:
        raise UsageError("--le-email is required when using Let's Encrypt.")

    mode = _parse_mode(smtp_mode)
    security = _parse_security(smtp_security)
    host = (smtp_host or "").strip()
    user = (smtp_user or "").strip()
    password = smtp_pass or ""
    if mode is MailMode.RELAY and not host:
        raise UsageError("relay mode needs --smtp-host.")
    if mode is MailMode.MAILBOX and not (host and user and password):
        raise UsageError("mailbox mode needs --smtp-host --smtp-user --smtp-pass.")
    if not 1 <= smtp_port <= 65535:
        raise UsageError("--smtp-port must be between 1 and 65535.")

    if not str(stack_dir).strip():
        raise UsageError("--stack-dir must not be empty.")
    stack_path = Path(stack_dir).expanduser()

    generated = not db_pass
    secret = generate_db_password() if generated else str(db_pass)
    database = database or DatabaseConfig()

    return StackParameters(
        domain=normalised_domain,
        db_pass=secret,
        le_email=email,
        use_letsencrypt=use_letsencrypt,
        smtp_mode=mode,
        smtp_host=host,
        smtp_port=smtp_port,
        smtp_security=security,
        smtp_user=user,
        smtp_pass=password,
        noreply_email=noreply_email.strip() or DEFAULT_NOREPLY_EMAIL,
        noreply_name=noreply_name.strip() or DEFAULT_NOREPLY_NAME,
        db_name=database.name,
        db_user=database.user,
        db_pass_generated=generated,
        images=images or StackImages(),
        stack_dir=stack_path,
        enable_backup=enable_backup,
        install_cron=install_cron,
    )


__all__ = [
    "MailMode",
    "PASSWORD_ALPHABET",
    "PASSWORD_LENGTH",
    "SmtpSecurity",
    "StackImages",
    "StackParameters",
    "UsageError",
    "build_parameters",
    "generate_db_password",
    "validate_domain",
]
