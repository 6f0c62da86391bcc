"""Host identification: distribution, package manager and SSH unit. Read-only."""

import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .commands import CommandRunner
from .errors import HostIdentityError, UnsupportedHostError
from .logs import logger
from .services import list_unit_files

# Probe order matters: dnf hosts often ship a yum shim.
PACKAGE_MANAGER_BINARIES = (
    ("apt", "apt-get"),
    ("dnf", "dnf"),
    ("yum", "yum"),
    ("zypper", "zypper"),
    ("pacman", "pacman"),
)


@dataclass(frozen=True)
class HostProfile:
    """What a run learned about the host before touching it."""

    distro_id: str
    version: str
    codename: str
    package_manager: str
    ssh_service: str
    id_like: str = ""

    @property
    def major_version(self) -> str:
        return self.version.split(".", 1)[0]


def parse_os_release(text: str) -> dict[str, str]:
    """
    Parse os-release(5) content into a dict.

    Values may be quoted; quotes and shell escapes are removed.
    """
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw = line.split("=", 1)
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def read_os_release(path: Path) -> dict[str, str]:
    """Read the host identity file, raising HostIdentityError if it is unreadable."""
    try:
        return parse_os_release(Path(path).read_text())
    except OSError as e:
        raise HostIdentityError(f"{path} not readable, cannot identify this system: {e}") from e


def detect_package_manager() -> str:
    """Detect the host's package manager by executable presence."""
    for name, binary in PACKAGE_MANAGER_BINARIES:
        if shutil.which(binary):
            return name
    raise UnsupportedHostError(
        "No supported package manager found (apt/dnf/yum/zypper/pacman)"
    )


def detect_ssh_service(runner: CommandRunner) -> str:
    """
    Get the SSH service unit name for this distro.

    Debian/Ubuntu use 'ssh', RHEL/Fedora/Arch/SUSE use 'sshd'. An inconclusive
    query falls back to 'sshd'.
    """
    for line in list_unit_files(runner).splitlines():
        fields = line.split()
        if fields and fields[0] == "ssh.service":
            return "ssh"
    return "sshd"


def probe_host(os_release: Path, runner: CommandRunner, package_manager: Optional[str] = None) -> HostProfile:
    """
    Build the HostProfile for this run.

    Args:
        os_release: Path to the os-release file
        runner: Command runner (used for read-only queries)
        package_manager: Skip detection and use this manager name

    Returns:
        HostProfile
    """
    info = read_os_release(os_release)
    pm = package_manager or detect_package_manager()
    profile = HostProfile(
        distro_id=info.get("ID", "unknown"),
        version=info.get("VERSION_ID", ""),
        codename=info.get("VERSION_CODENAME", ""),
        package_manager=pm,
        ssh_service=detect_ssh_service(runner),
        id_like=info.get("ID_LIKE", ""),
    )
    logger.info(
        f"Detected system: ID={profile.distro_id} VERSION={profile.version} "
        f"CODENAME={profile.codename} PM={profile.package_manager} SSH={profile.ssh_service}"
    )
    return profile
