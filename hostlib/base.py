"""Base orchestrator class and run lock."""

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from .errors import RunLockedError
from .logs import logger


class BaseOrchestrator:
    """
    Base class for hostbase orchestrators.

    Tracks what a run changed and what it had to give up on, so both can be
    repeated in the closing summary after the step output has scrolled away.
    """

    def __init__(self, dry_run: bool = False, verbose: bool = False):
        """
        Initialize the orchestrator.

        Args:
            dry_run: If True, only log what would be done without making changes
            verbose: If True, enable verbose output
        """
        self.dry_run = dry_run
        self.verbose = verbose
        self.changes: List[str] = []
        self.warnings: List[str] = []

    def log(self, msg: str) -> None:
        """Log a message (the [DRY-RUN] prefix is added by the log filter)."""
        logger.info(msg)

    def warn(self, msg: str) -> None:
        """Log a degraded outcome and keep it for the summary."""
        logger.warning(msg)
        self.warnings.append(msg)

    def section(self, title: str) -> None:
        self.log(f"=== {title} ===")

    def record_change(self, description: str) -> None:
        self.changes.append(description)

    def summarize(self, title: str = "Summary") -> None:
        """
        Log the changes and warnings collected during the run.

        Args:
            title: Title for the summary section
        """
        self.log("")
        self.log("=" * 60)
        self.log(title)
        if self.dry_run:
            self.log(f"Dry-run complete, {len(self.changes)} planned changes, nothing was modified")
        elif self.changes:
            self.log(f"Changes made: {len(self.changes)}")
        else:
            self.log("Host already matches the baseline")
        for change in self.changes:
            self.log(f"  - {change}")
        if self.warnings:
            self.log(f"Warnings: {len(self.warnings)}")
            for warning in self.warnings:
                self.log(f"  ! {warning}")
        self.log("=" * 60)


@contextmanager
def run_lock(lock_file: Path) -> Iterator[None]:
    """
    Hold an exclusive lock for the duration of a run.

    Raises:
        RunLockedError: another run holds the lock
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_file, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise RunLockedError(f"Another hostbase run holds {lock_file}") from None
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        yield
    finally:
        os.close(fd)
