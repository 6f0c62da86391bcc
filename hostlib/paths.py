"""Centralized path constants for hostbase.

Every system path hostbase reads or writes lives in ``HostPaths`` so a run can be
pointed at a scratch root (tests, chroots) without touching the real host.
"""

import os
from dataclasses import dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# Project paths (relative to this file's location)
PACKAGE_ROOT = Path(__file__).parent.resolve()
CONFIGS_DIR = PACKAGE_ROOT / "configs"
TEMPLATES_DIR = PACKAGE_ROOT / "templates"

PACKAGES_MANIFEST = CONFIGS_DIR / "packages.toml"
MIRRORS_CONFIG = CONFIGS_DIR / "mirrors.toml"

# Run-scoped defaults
LOG_DIR = Path("/var/log")
BACKUP_BASE = Path("/var/backups")


@dataclass(frozen=True)
class HostPaths:
    """System files touched or inspected during a run."""

    os_release: Path = Path("/etc/os-release")
    apt_sources: Path = Path("/etc/apt/sources.list")
    pip_conf: Path = Path("/etc/pip.conf")
    docker_daemon: Path = Path("/etc/docker/daemon.json")
    sshd_config: Path = Path("/etc/ssh/sshd_config")
    sshd_dropin_dir: Path = Path("/etc/ssh/sshd_config.d")
    locale_gen: Path = Path("/etc/locale.gen")
    zoneinfo_dir: Path = Path("/usr/share/zoneinfo")
    root_home: Path = Path("/root")
    lock_file: Path = Path("/run/hostbase.lock")

    def under(self, root: Union[str, Path]) -> "HostPaths":
        """
        Re-root every path below ``root``.

        Args:
            root: Directory standing in for ``/``

        Returns:
            A new HostPaths with all paths prefixed by root
        """
        root = Path(root)
        return replace(
            self,
            **{f.name: root / getattr(self, f.name).relative_to("/") for f in fields(self)},
        )


def run_timestamp(now: Optional[datetime] = None) -> str:
    """Timestamp used for log names and backup artifact suffixes."""
    return (now or datetime.now()).strftime("%Y-%m-%d-%H%M%S")


def default_log_path(timestamp: str) -> Path:
    """Get the default log file for a run."""
    return LOG_DIR / f"hostbase-{timestamp}.log"


def default_backup_dir(timestamp: str) -> Path:
    """Get the default run-scoped backup directory."""
    return BACKUP_BASE / f"hostbase-{timestamp}"


def get_sudo_user() -> str:
    """
    Get the invoking user when running under sudo.

    Returns an empty string for a direct root login.
    """
    user = os.environ.get("SUDO_USER", "")
    return "" if user == "root" else user
