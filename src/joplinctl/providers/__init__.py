"""Provider interfaces for joplinctl."""
from __future__ import annotations

from .certbot import CertbotProvider, CertificateError
from .compose import ComposeError, ComposeInvoker
from .cron import CronError, CronProvider
from .nginx import NginxError, NginxProvider

__all__ = [
    "CertbotProvider",
    "CertificateError",
    "ComposeError",
    "ComposeInvoker",
    "CronError",
    "CronProvider",
    "NginxError",
    "NginxProvider",
]
