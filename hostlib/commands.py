"""External command execution with dry-run support.

Commands are argv lists, never shell strings. Every side-effecting command is
logged as ``+ <cmd>`` before it runs; in dry-run mode the same line is logged
and the command is skipped.
"""

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from .logs import logger


@dataclass(frozen=True)
class Command:
    """A program and its arguments, plus environment overrides."""

    argv: tuple
    env: dict = field(default_factory=dict)

    def __str__(self) -> str:
        prefix = " ".join(f"{k}={shlex.quote(v)}" for k, v in self.env.items())
        line = shlex.join(self.argv)
        return f"{prefix} {line}" if prefix else line


@dataclass
class CommandResult:
    """Outcome of a command (or of a skipped dry-run command)."""

    command: Command
    returncode: int
    stdout: str = ""
    stderr: str = ""
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def cmd(*argv: str, env: Optional[dict] = None) -> Command:
    """Build a Command from positional arguments."""
    return Command(tuple(str(a) for a in argv), dict(env or {}))


class CommandRunner:
    """
    Runs commands for one hostbase run.

    ``history`` keeps every side-effecting command in the order it was issued
    (executed or, in dry-run, only planned).
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.history: list[Command] = []

    def run(self, command: Command, step: str = "") -> CommandResult:
        """
        Run a side-effecting command. Never raises for a failing command.

        Args:
            command: Command to run
            step: Name of the step issuing the command (for the log)

        Returns:
            CommandResult; in dry-run a successful result with skipped=True
        """
        label = f"[{step}] " if step else ""
        logger.info(f"{label}+ {command}")
        self.history.append(command)

        if self.dry_run:
            return CommandResult(command, 0, skipped=True)

        result = self._execute(command)
        if not result.ok:
            detail = (result.stderr or result.stdout).strip()
            logger.debug(f"{label}exit {result.returncode}: {detail}")
        return result

    def query(self, command: Command) -> CommandResult:
        """
        Run a read-only command. Runs in dry-run mode too and is not recorded.
        """
        logger.debug(f"? {command}")
        return self._execute(command)

    def _execute(self, command: Command) -> CommandResult:
        env = {**os.environ, **command.env} if command.env else None
        try:
            proc = subprocess.run(
                list(command.argv),
                capture_output=True,
                text=True,
                env=env,
            )
        except FileNotFoundError as e:
            return CommandResult(command, 127, stderr=str(e))
        except PermissionError as e:
            return CommandResult(command, 126, stderr=str(e))
        return CommandResult(command, proc.returncode, proc.stdout or "", proc.stderr or "")
