"""External process execution with typed results.

Every binary the provisioning workflow touches (package managers, docker,
systemctl, compose) is invoked through an :class:`ExternalProcess`. Production
code uses :class:`SubprocessRunner`; tests inject a recorder that returns
scripted :class:`ProcessResult` values.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


class ProcessError(RuntimeError):
    """Raised when a checked command exits non-zero or cannot be executed."""

    def __init__(self, message: str, result: ProcessResult | None = None) -> None:
        """Store the failing *result* alongside the message."""
        super().__init__(message)
        self.result = result


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Exit status and captured output of one command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited successfully."""
        return self.returncode == 0

    def diagnostic(self) -> str:
        """Return the most useful captured output for an error message."""
        return (self.stderr or self.stdout or "no output").strip()

    def check(self, error_prefix: str | None = None) -> ProcessResult:
        """Return ``self`` or raise :class:`ProcessError` on a non-zero exit."""
        if self.ok:
            return self
        prefix = error_prefix or " ".join(self.args)
        raise ProcessError(
            f"{prefix} failed (exit {self.returncode}): {self.diagnostic()}",
            self,
        )


class ExternalProcess(Protocol):
    """Capability to run commands and query the executable search path."""

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        stdout_path: Path | None = None,
    ) -> ProcessResult:
        """Run *args* to completion and return the captured result."""
        ...

    def which(self, command: str) -> str | None:
        """Return the resolved path for *command*, or ``None``."""
        ...


class SubprocessRunner:
    """Run commands with :mod:`subprocess`, never raising on non-zero exits."""

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        stdout_path: Path | None = None,
    ) -> ProcessResult:
        """Run *args*; stream stdout into *stdout_path* when provided."""
        command = [str(arg) for arg in args]
        LOGGER.debug("exec: %s", " ".join(command))
        try:
            if stdout_path is not None:
                with stdout_path.open("wb") as handle:
                    completed_bytes = subprocess.run(  # noqa: S603
                        command,
                        stdout=handle,
                        stderr=subprocess.PIPE,
                        env=dict(env) if env is not None else None,
                        check=False,
                    )
                return ProcessResult(
                    args=tuple(command),
                    returncode=completed_bytes.returncode,
                    stdout="",
                    stderr=completed_bytes.stderr.decode("utf-8", errors="replace"),
                )
            completed = subprocess.run(  # noqa: S603
                command,
                input=input_text,
                capture_output=True,
                text=True,
                env=dict(env) if env is not None else None,
                check=False,
            )
        except FileNotFoundError as exc:
            return ProcessResult(
                args=tuple(command),
                returncode=COMMAND_NOT_FOUND,
                stderr=f"{command[0]} not found: {exc}",
            )
        return ProcessResult(
            args=tuple(command),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def which(self, command: str) -> str | None:
        """Resolve *command* on ``PATH``."""
        return shutil.which(command)


__all__ = [
    "COMMAND_NOT_FOUND",
    "ExternalProcess",
    "ProcessError",
    "ProcessResult",
    "SubprocessRunner",
]
