"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    A degraded certificate outcome is not listed here; its exit code comes from
    ``AppConfig.degraded_exit_code`` so automation callers can opt in to a
    non-zero status.
    """

    OK = 0
    FAILURE = 1
