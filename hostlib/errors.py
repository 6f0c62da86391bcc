"""Fatal error types.

Anything raised from here aborts the run with a non-zero exit. Soft failures
(package installs, service restarts) never raise; they are logged where they
happen.
"""


class HostbaseError(Exception):
    """Base class for fatal hostbase errors."""


class HostIdentityError(HostbaseError):
    """The host identity file could not be read."""


class UnsupportedHostError(HostbaseError):
    """No supported package manager was found."""


class SSHConfigError(HostbaseError):
    """sshd rejected the hardened configuration."""


class RunLockedError(HostbaseError):
    """Another hostbase run holds the lock."""


class ConfigError(HostbaseError):
    """The run configuration is invalid."""
