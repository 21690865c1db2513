"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from joplinctl.process import ProcessResult


@dataclass
class _Rule:
    pattern: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    remaining: int | None


def _contains(command: Sequence[str], pattern: Sequence[str]) -> bool:
    width = len(pattern)
    return any(
        list(command[index : index + width]) == list(pattern)
        for index in range(len(command) - width + 1)
    )


@dataclass
class FakeProcess:
    """Recording :class:`~joplinctl.process.ExternalProcess` double.

    Commands succeed with empty output unless a rule scripted with
    :meth:`script` matches; a rule matches when its tokens appear contiguously
    in the command. Later rules win over earlier ones, and a rule with
    ``times`` set stops matching once used up.
    """

    paths: dict[str, str] = field(default_factory=dict)
    calls: list[list[str]] = field(default_factory=list)
    inputs: list[str | None] = field(default_factory=list)
    rules: list[_Rule] = field(default_factory=list)

    def script(
        self,
        *pattern: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        times: int | None = None,
    ) -> None:
        self.rules.append(_Rule(tuple(pattern), returncode, stdout, stderr, times))

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        stdout_path: Path | None = None,
    ) -> ProcessResult:
        command = [str(arg) for arg in args]
        self.calls.append(command)
        self.inputs.append(input_text)
        returncode, stdout, stderr = 0, "", ""
        for rule in reversed(self.rules):
            if rule.remaining == 0 or not _contains(command, rule.pattern):
                continue
            if rule.remaining is not None:
                rule.remaining -= 1
            returncode, stdout, stderr = rule.returncode, rule.stdout, rule.stderr
            break
        if stdout_path is not None:
            stdout_path.write_text(stdout, encoding="utf-8")
            stdout = ""
        return ProcessResult(tuple(command), returncode, stdout, stderr)

    def which(self, command: str) -> str | None:
        return self.paths.get(command)

    def ran(self, *pattern: str) -> bool:
        """Return ``True`` when any recorded command contains *pattern*."""
        return any(_contains(command, pattern) for command in self.calls)

    def matching(self, *pattern: str) -> list[list[str]]:
        """Return recorded commands containing *pattern*."""
        return [command for command in self.calls if _contains(command, pattern)]

    def index(self, *pattern: str) -> int:
        """Return the position of the first command containing *pattern*."""
        for position, command in enumerate(self.calls):
            if _contains(command, pattern):
                return position
        raise AssertionError(f"{' '.join(pattern)!r} was never run")


@pytest.fixture()
def fake_process() -> FakeProcess:
    """Return a fresh process recorder with docker on PATH."""
    return FakeProcess(paths={"docker": "/usr/bin/docker"})


@pytest.fixture()
def os_release(tmp_path: Path):
    """Return a writer producing an ``os-release`` file under *tmp_path*."""

    def _write(text: str) -> Path:
        path = tmp_path / "os-release"
        path.write_text(text, encoding="utf-8")
        return path

    return _write
