"""Install the stack's scheduled maintenance entries into cron."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..process import ExternalProcess
from ..templates import write_atomic

LOGGER = logging.getLogger(__name__)

SCHEDULER_UNITS = ("cron", "crond")


class CronError(RuntimeError):
    """Raised when the cron file cannot be written or removed."""


@dataclass(slots=True)
class CronProvider:
    """Manage ``/etc/cron.d/joplin-stack`` and reload the scheduler daemon."""

    runner: ExternalProcess
    cron_file: Path = Path("/etc/cron.d/joplin-stack")
    systemctl_bin: str = "systemctl"

    def install(self, content: str) -> bool:
        """Write *content* to the cron file; return whether the scheduler reloaded."""
        try:
            write_atomic(self.cron_file, content, mode=0o644)
        except OSError as exc:
            raise CronError(f"Failed to write {self.cron_file}: {exc}") from exc
        return self.reload_scheduler()

    def remove(self) -> bool:
        """Remove the cron file; return ``True`` when one existed."""
        try:
            self.cron_file.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise CronError(f"Failed to remove {self.cron_file}: {exc}") from exc
        self.reload_scheduler()
        return True

    def installed(self) -> bool:
        """Return ``True`` when the cron file exists."""
        return self.cron_file.exists()

    def reload_scheduler(self) -> bool:
        """Reload whichever cron daemon unit exists."""
        for unit in SCHEDULER_UNITS:
            if self.runner.run([self.systemctl_bin, "reload", unit]).ok:
                return True
        LOGGER.warning("Could not reload cron or crond; new entries apply on next restart.")
        return False


__all__ = ["CronError", "CronProvider"]
