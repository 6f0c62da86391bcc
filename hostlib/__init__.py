"""hostlib - safe mutation engine behind hostbase."""

from .commands import Command, CommandRunner, cmd
from .config import MirrorMode, PipMirrorMode, RunConfiguration
from .errors import (
    ConfigError,
    HostbaseError,
    HostIdentityError,
    RunLockedError,
    SSHConfigError,
    UnsupportedHostError,
)
from .files import BackupSet, MutationRecord, SafeFileMutator
from .packages import PACKAGE_MANAGERS, PackageManager, get_package_manager
from .paths import HostPaths
from .probe import HostProfile, probe_host
from .rollback import RollbackGenerator
from .security import PasswordAuthIntent, SSHHardeningGuard, SSHPolicy, resolve_policy

__all__ = [
    "Command",
    "CommandRunner",
    "cmd",
    "MirrorMode",
    "PipMirrorMode",
    "RunConfiguration",
    "ConfigError",
    "HostbaseError",
    "HostIdentityError",
    "RunLockedError",
    "SSHConfigError",
    "UnsupportedHostError",
    "BackupSet",
    "MutationRecord",
    "SafeFileMutator",
    "PACKAGE_MANAGERS",
    "PackageManager",
    "get_package_manager",
    "HostPaths",
    "HostProfile",
    "probe_host",
    "RollbackGenerator",
    "PasswordAuthIntent",
    "SSHHardeningGuard",
    "SSHPolicy",
    "resolve_policy",
]
