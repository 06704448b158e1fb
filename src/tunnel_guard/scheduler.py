"""Background execution registration via the user's crontab."""

import shlex
import shutil
import subprocess
from collections.abc import Sequence
from typing import Protocol

from .common.exceptions import SchedulerError
from .common.logging import get_logger

logger = get_logger(__name__)

MARKER = "# tunnel-guard"


class TaskScheduler(Protocol):
    """Registers the supervisor to run in the background."""

    def install(self, argv: Sequence[str]) -> None:
        ...

    def uninstall(self) -> bool:
        ...

    def is_installed(self) -> bool | None:
        """True/False, or None if the scheduler cannot be queried."""
        ...


class CrontabScheduler:
    """Keeps the supervisor alive through two crontab entries.

    ``@reboot`` starts it at boot, and a periodic entry restarts it if the
    supervisor itself died. Both entries are wrapped in ``flock`` when
    available. Without it the supervisor refuses to start while another loop
    is running, so repeated watchdog runs never stack up.
    """

    def __init__(
        self,
        crontab_binary: str = "crontab",
        watchdog_minutes: int = 5,
        lock_file: str = "/tmp/tunnel-guard.lock",
        timeout: float = 10.0,
    ):
        self.crontab_binary = crontab_binary
        self.watchdog_minutes = watchdog_minutes
        self.lock_file = lock_file
        self.timeout = timeout

    def _run(self, args: list[str], input_text: str | None = None) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                [self.crontab_binary, *args],
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SchedulerError(f"Cannot run {self.crontab_binary}: {e}") from e

    def read_entries(self) -> list[str]:
        """Return the current crontab lines."""
        result = self._run(["-l"])
        if result.returncode != 0:
            # "no crontab for <user>" is an empty table, not a failure
            if "no crontab" in result.stderr.lower():
                return []
            raise SchedulerError(f"crontab -l failed: {result.stderr.strip()}")
        return result.stdout.splitlines()

    def _write_entries(self, lines: list[str]) -> None:
        content = "\n".join(lines) + "\n" if lines else ""
        result = self._run(["-"], input_text=content)
        if result.returncode != 0:
            raise SchedulerError(f"crontab update failed: {result.stderr.strip()}")

    def build_entries(self, argv: Sequence[str]) -> list[str]:
        """Crontab lines that run ``argv`` at boot and as a watchdog."""
        command = shlex.join(argv)
        watchdog = command
        if shutil.which("flock"):
            watchdog = f"flock -n {shlex.quote(self.lock_file)} {command}"
        else:
            # The loop exits on its own when another supervisor is running
            logger.info("flock not found, entries run without a lock file")
        return [
            f"@reboot {watchdog} >/dev/null 2>&1 {MARKER}",
            f"*/{self.watchdog_minutes} * * * * {watchdog} >/dev/null 2>&1 {MARKER}",
        ]

    def install(self, argv: Sequence[str]) -> None:
        """Replace any previous entries with fresh ones for ``argv``."""
        kept = [line for line in self.read_entries() if not line.endswith(MARKER)]
        entries = self.build_entries(argv)
        self._write_entries(kept + entries)
        logger.info("Background task installed", entries=len(entries))

    def uninstall(self) -> bool:
        """Remove our entries.

        Returns:
            True if any entry was removed
        """
        lines = self.read_entries()
        kept = [line for line in lines if not line.endswith(MARKER)]
        if len(kept) == len(lines):
            logger.info("Background task not installed, nothing to remove")
            return False
        self._write_entries(kept)
        logger.info("Background task removed", entries=len(lines) - len(kept))
        return True

    def is_installed(self) -> bool | None:
        try:
            return any(line.endswith(MARKER) for line in self.read_entries())
        except SchedulerError as e:
            logger.debug("Cannot query crontab", error=str(e))
            return None
