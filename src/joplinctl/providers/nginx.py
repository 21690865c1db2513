"""Proxy operations against the running nginx service."""
from __future__ import annotations

from dataclasses import dataclass

from ..process import ProcessResult
from .compose import ComposeError, ComposeInvoker

PROXY_SERVICE = "nginx"


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxProvider:
    """Validate and reload the proxy container's configuration."""

    compose: ComposeInvoker
    service: str = PROXY_SERVICE

    def test_config(self) -> ProcessResult:
        """Run ``nginx -t`` inside the proxy container."""
        return self._exec(["nginx", "-t"])

    def reload(self) -> ProcessResult:
        """Signal nginx to reload without dropping connections."""
        return self._exec(["nginx", "-s", "reload"])

    def restart_command(self) -> str:
        """Return the operator command that restarts the proxy by hand."""
        layout = self.compose.layout
        wrapper = str(layout.compose_wrapper) if layout is not None else "docker compose"
        return f"{wrapper} --env-file ./.env restart {self.service}"

    def _exec(self, args: list[str]) -> ProcessResult:
        try:
            return self.compose.run(["exec", "-T", self.service, *args])
        except ComposeError as exc:
            raise NginxError(str(exc)) from exc


__all__ = ["NginxError", "NginxProvider", "PROXY_SERVICE"]
