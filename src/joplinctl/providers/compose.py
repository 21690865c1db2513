"""Compose command surface resolution and invocation."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..layout import StackLayout
from ..process import ExternalProcess, ProcessError, ProcessResult

LOGGER = logging.getLogger(__name__)

LEGACY_COMPOSE_BIN = "docker-compose"


class ComposeError(RuntimeError):
    """Raised when no compose surface exists or a compose command fails."""

    def __init__(self, message: str, result: ProcessResult | None = None) -> None:
        """Keep the failing *result* for diagnostics."""
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class ComposeInvoker:
    """Run compose commands through the plugin surface or the legacy binary."""

    runner: ExternalProcess
    layout: StackLayout | None = None
    docker_bin: str = "docker"
    _command: tuple[str, ...] | None = field(default=None, init=False, repr=False)

    def resolve(self) -> tuple[str, ...]:
        """Return the compose command prefix, preferring ``docker compose``."""
        if self._command is not None:
            return self._command
        if self.runner.run([self.docker_bin, "compose", "version"]).ok:
            self._command = (self.docker_bin, "compose")
        elif self.runner.which(LEGACY_COMPOSE_BIN) is not None:
            self._command = (LEGACY_COMPOSE_BIN,)
        else:
            raise ComposeError("docker compose / docker-compose not found.")
        LOGGER.debug("compose surface: %s", " ".join(self._command))
        return self._command

    @property
    def is_legacy(self) -> bool:
        """Return ``True`` when the standalone ``docker-compose`` binary is in use."""
        return self.resolve() == (LEGACY_COMPOSE_BIN,)

    def command(self, args: Sequence[str]) -> list[str]:
        """Return the full command line for *args*."""
        command = list(self.resolve())
        if self.layout is not None:
            command.extend(
                ["-f", str(self.layout.compose_file), "--env-file", str(self.layout.env_file)]
            )
        command.extend(args)
        return command

    def run(self, args: Sequence[str], *, check: bool = True) -> ProcessResult:
        """Run a compose subcommand; raise :class:`ComposeError` on failure when *check*."""
        result = self.runner.run(self.command(args))
        if check:
            try:
                result.check(f"compose {' '.join(args)}")
            except ProcessError as exc:
                raise ComposeError(str(exc), result) from exc
        return result


__all__ = ["ComposeError", "ComposeInvoker", "LEGACY_COMPOSE_BIN"]
