"""Systemd service management. Every action tolerates failure and logs it."""

import shutil

from .commands import CommandResult, CommandRunner, cmd
from .logs import logger


def has_systemctl() -> bool:
    """Check whether a systemd service manager is available."""
    return shutil.which("systemctl") is not None


def _systemctl(runner: CommandRunner, *args: str, step: str = "services") -> CommandResult:
    """Run a systemctl command, logging (not raising) on failure."""
    result = runner.run(cmd("systemctl", *args), step=step)
    if not result.ok:
        logger.warning(f"systemctl {' '.join(args)} failed (exit {result.returncode}), continuing")
    return result


def list_unit_files(runner: CommandRunner) -> str:
    """List installed unit files (read-only query, empty on failure)."""
    result = runner.query(cmd("systemctl", "list-unit-files", "--no-legend"))
    return result.stdout if result.ok else ""


def enable_service(runner: CommandRunner, service: str, now: bool = False, step: str = "services") -> bool:
    """
    Enable a systemd service.

    Args:
        runner: Command runner for this run
        service: Service name (e.g., "docker" or "sshd")
        now: Also start the service

    Returns:
        True if systemctl reported success
    """
    args = ["enable", "--now", service] if now else ["enable", service]
    return _systemctl(runner, *args, step=step).ok


def restart_service(runner: CommandRunner, service: str, step: str = "services") -> bool:
    """Restart a service."""
    logger.info(f"Restarting {service}")
    return _systemctl(runner, "restart", service, step=step).ok


def daemon_reload(runner: CommandRunner, step: str = "services") -> bool:
    """Reload systemd daemon after unit or drop-in changes."""
    return _systemctl(runner, "daemon-reload", step=step).ok
