"""Cross-distro package management with best-effort operations.

One ``PackageManager`` subclass per backend. Operations log failures and report
them through their return value; none of them raise, because a missing package
degrades the host but must not stop independent later steps.
"""

import tomllib
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .commands import Command, CommandRunner, cmd
from .logs import logger
from .probe import HostProfile


class PackageManager:
    """Common interface over apt, dnf, yum, zypper and pacman."""

    name = ""
    install_cmd: tuple = ()
    env: dict = {}
    # Native container engine packages, tried in order
    container_candidates: tuple = ()
    # Locale support packages, tried in order; "{lang}" is substituted
    locale_candidates: tuple = ()
    # Whether locales are enabled through /etc/locale.gen
    uses_locale_gen = False

    def __init__(self, runner: CommandRunner, profile: Optional[HostProfile] = None):
        self.runner = runner
        self.profile = profile

    # -------------------------------------------------------------------------
    # Per-backend command tables
    # -------------------------------------------------------------------------

    def refresh_commands(self) -> list[Command]:
        return []

    def upgrade_commands(self) -> list[Command]:
        return []

    def autoremove_commands(self) -> list[Command]:
        return []

    def query_installed_command(self) -> Command:
        return cmd("rpm", "-qa", "--queryformat", "%{NAME}\n")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def refresh_metadata(self) -> bool:
        """Refresh package metadata. Failure is expected on restricted networks."""
        commands = self.refresh_commands()
        if not commands:
            logger.debug(f"{self.name}: no separate metadata refresh")
            return True
        ok = True
        for command in commands:
            result = self.runner.run(command, step="refresh")
            if not result.ok:
                logger.debug(f"{self.name}: metadata refresh failed, continuing")
                ok = False
        return ok

    def upgrade(self, upgrade: bool, autoremove: bool) -> bool:
        """
        Upgrade installed packages and optionally remove unused ones.

        Args:
            upgrade: Run the upgrade sub-step
            autoremove: Run the autoremove sub-step (only after an upgrade)

        Returns:
            True if every sub-step that ran succeeded
        """
        ok = True
        if not upgrade:
            logger.info("Skipping system upgrade")
            return ok

        for command in self.upgrade_commands():
            if not self.runner.run(command, step="upgrade").ok:
                logger.warning(f"{self.name}: upgrade failed, continuing")
                ok = False

        if autoremove:
            commands = self.autoremove_commands()
            if not commands:
                logger.info(f"{self.name}: autoremove not supported, skipping")
            for command in commands:
                if not self.runner.run(command, step="autoremove").ok:
                    logger.warning(f"{self.name}: autoremove failed, continuing")
                    ok = False
        return ok

    def installed_packages(self) -> set[str]:
        """Get all installed packages (batch query, empty on failure)."""
        result = self.runner.query(self.query_installed_command())
        if not result.ok:
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def prepare(self) -> None:
        """Hook for repositories that must exist before other installs succeed."""

    def install(self, packages: Iterable[str]) -> bool:
        """
        Idempotently ensure packages are installed.

        Args:
            packages: Package names

        Returns:
            True if everything requested is (now) installed
        """
        wanted = sorted({p for p in packages if p})
        if not wanted:
            return True

        self.prepare()
        installed = self.installed_packages()
        to_install = [p for p in wanted if p not in installed]
        if not to_install:
            logger.info(f"Already installed: {', '.join(wanted)}")
            return True

        logger.info(f"Installing: {', '.join(to_install)}")
        result = self.runner.run(Command(self.install_cmd + tuple(to_install), dict(self.env)), step="install")
        if not result.ok:
            logger.warning(f"{self.name}: failed to install {', '.join(to_install)}, continuing")
        return result.ok

    def install_first(self, alternatives: Sequence[Sequence[str]]) -> bool:
        """
        Install the first package set from ``alternatives`` that succeeds.

        Returns:
            True if one of the alternatives installed
        """
        for packages in alternatives:
            if self.install(packages):
                return True
        if alternatives:
            logger.warning(f"{self.name}: none of the package alternatives installed")
        return False


class Apt(PackageManager):
    name = "apt"
    env = {"DEBIAN_FRONTEND": "noninteractive"}
    install_cmd = ("apt-get", "install", "-y", "--no-install-recommends")
    container_candidates = (("docker.io",),)
    locale_candidates = (("locales",),)
    uses_locale_gen = True

    def refresh_commands(self) -> list[Command]:
        return [cmd("apt-get", "update", "-y")]

    def upgrade_commands(self) -> list[Command]:
        return [cmd("apt-get", "dist-upgrade", "-y", env=self.env)]

    def autoremove_commands(self) -> list[Command]:
        return [cmd("apt-get", "autoremove", "-y", env=self.env)]

    def query_installed_command(self) -> Command:
        return cmd("dpkg-query", "-W", "-f=${db:Status-Status} ${Package}\n")

    def installed_packages(self) -> set[str]:
        # dpkg-query also lists removed-but-configured packages
        result = self.runner.query(self.query_installed_command())
        if not result.ok:
            return set()
        installed = set()
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) == 2 and fields[0] == "installed":
                installed.add(fields[1])
        return installed


class Dnf(PackageManager):
    name = "dnf"
    install_cmd = ("dnf", "install", "-y")
    container_candidates = (
        ("docker", "docker-compose-plugin"),
        ("moby-engine", "docker-compose-plugin"),
    )
    locale_candidates = (("glibc-langpack-{lang}",), ("glibc-common",))

    def refresh_commands(self) -> list[Command]:
        return [cmd("dnf", "makecache", "-y")]

    def upgrade_commands(self) -> list[Command]:
        return [cmd("dnf", "upgrade", "-y")]

    def autoremove_commands(self) -> list[Command]:
        return [cmd("dnf", "autoremove", "-y")]


class Yum(PackageManager):
    name = "yum"
    install_cmd = ("yum", "install", "-y")
    container_candidates = (("docker", "docker-compose-plugin"),)
    locale_candidates = (("glibc-langpack-{lang}",), ("glibc-common",))

    # EL7 ships python3 and friends only through EPEL
    legacy_releases = {("centos", "7"), ("rhel", "7")}

    def __init__(self, runner: CommandRunner, profile: Optional[HostProfile] = None):
        super().__init__(runner, profile)
        self._prepared = False

    def refresh_commands(self) -> list[Command]:
        return [cmd("yum", "makecache", "-y")]

    def upgrade_commands(self) -> list[Command]:
        return [cmd("yum", "update", "-y")]

    def autoremove_commands(self) -> list[Command]:
        return [cmd("yum", "autoremove", "-y")]

    def is_legacy(self) -> bool:
        if self.profile is None:
            return False
        return (self.profile.distro_id, self.profile.major_version) in self.legacy_releases

    def prepare(self) -> None:
        if self._prepared:
            return
        self._prepared = True
        if self.is_legacy():
            logger.info("Legacy release detected, installing epel-release first")
            self.install(["epel-release"])


class Zypper(PackageManager):
    name = "zypper"
    install_cmd = ("zypper", "--non-interactive", "install")
    container_candidates = (("docker", "docker-compose"),)
    locale_candidates = (("glibc-locale",),)

    def refresh_commands(self) -> list[Command]:
        return [cmd("zypper", "--non-interactive", "refresh")]

    def upgrade_commands(self) -> list[Command]:
        return [cmd("zypper", "--non-interactive", "update")]


class Pacman(PackageManager):
    name = "pacman"
    install_cmd = ("pacman", "-S", "--needed", "--noconfirm")
    container_candidates = (("docker", "docker-compose"),)
    uses_locale_gen = True

    # Syncing the database without upgrading leaves a partial upgrade behind,
    # so metadata is only refreshed as part of -Syu.

    def upgrade_commands(self) -> list[Command]:
        return [cmd("pacman", "-Syu", "--noconfirm")]

    def autoremove_commands(self) -> list[Command]:
        result = self.runner.query(cmd("pacman", "-Qdtq"))
        orphans = result.stdout.split() if result.ok else []
        if not orphans:
            logger.info("pacman: no orphaned packages")
            return []
        return [cmd("pacman", "-Rns", "--noconfirm", *orphans)]

    def query_installed_command(self) -> Command:
        return cmd("pacman", "-Qq")


PACKAGE_MANAGERS = {cls.name: cls for cls in (Apt, Dnf, Yum, Zypper, Pacman)}


def get_package_manager(profile: HostProfile, runner: CommandRunner) -> PackageManager:
    """Instantiate the backend matching the probed host."""
    return PACKAGE_MANAGERS[profile.package_manager](runner, profile)


def load_package_manifest(
    manifest_path: Path,
    pm_name: str,
    groups: Optional[list[str]] = None,
) -> list[str]:
    """
    Resolve the package list for one backend from the TOML manifest.

    Every table with a ``packages`` array is a group; ``groups=None`` takes
    all of them in file order. Names are translated through
    ``[aliases.<pm_name>]`` and duplicates are dropped, keeping first position.
    """
    with open(manifest_path, "rb") as f:
        manifest = tomllib.load(f)

    # An alias mapping to "" drops the package for that manager
    aliases = manifest.get("aliases", {}).get(pm_name, {})
    tables = {
        name: table
        for name, table in manifest.items()
        if name != "aliases" and isinstance(table, dict) and "packages" in table
    }
    selected = list(tables) if groups is None else [g for g in groups if g in tables]

    resolved = (aliases.get(pkg, pkg) for group in selected for pkg in tables[group]["packages"])
    return list(dict.fromkeys(name for name in resolved if name))
