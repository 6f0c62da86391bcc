#!/usr/bin/env python3
"""
hostbase - bring a Linux host to a baseline state in one pass.

Switches package mirrors, upgrades and installs base packages, configures pip
and Docker mirrors, hardens SSH without locking anyone out, and sets locale and
timezone. Every system file it changes is backed up first, and a rollback
script is written to the backup directory at the end of the run.

Usage:
    sudo ./hostbase.py                  # Interactive: prompts for every setting
    sudo ./hostbase.py -y               # Unattended, defaults (or --config values)
    sudo ./hostbase.py -y -c run.toml   # Unattended with a settings file
    ./hostbase.py -y --dry-run          # Log what would change, change nothing
"""

import argparse
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

from hostlib.base import BaseOrchestrator, run_lock
from hostlib.commands import CommandRunner
from hostlib.config import MirrorMode, RunConfiguration, resolve_configuration
from hostlib.container import DEFAULT_VENDOR_SCRIPT, ContainerRuntimeInstaller
from hostlib.errors import HostbaseError
from hostlib.files import BackupSet, Mutation, SafeFileMutator
from hostlib.localization import LocaleConfigurator
from hostlib.logs import logger, setup_logging
from hostlib.mirrors import MirrorConfigurator, PipMirrorConfigurator, load_mirrors
from hostlib.packages import PackageManager, get_package_manager, load_package_manifest
from hostlib.paths import MIRRORS_CONFIG, PACKAGES_MANIFEST, HostPaths, run_timestamp
from hostlib.probe import HostProfile, probe_host
from hostlib.prompts import confirm
from hostlib.rollback import RollbackGenerator
from hostlib.security import PasswordAuthIntent, SSHHardeningGuard, SSHPolicy
from hostlib.services import enable_service, has_systemctl


class HostBootstrap(BaseOrchestrator):
    """One ordered baseline run against a host."""

    def __init__(
        self,
        config: RunConfiguration,
        paths: HostPaths = HostPaths(),
        verbose: bool = False,
        package_manager: Optional[str] = None,
        accounts: Optional[list] = None,
        mirrors: Optional[dict] = None,
        manifest: Path = PACKAGES_MANIFEST,
    ):
        super().__init__(dry_run=config.dry_run, verbose=verbose)
        self.config = config
        self.paths = paths
        self.package_manager = package_manager
        self.accounts = accounts
        self.mirrors = mirrors if mirrors is not None else load_mirrors(MIRRORS_CONFIG)
        self.manifest = manifest

        self.runner = CommandRunner(dry_run=config.dry_run)
        self.backups = BackupSet(config.backup_dir, config.timestamp)
        self.mutator = SafeFileMutator(self.backups, dry_run=config.dry_run)
        self.rollback = RollbackGenerator(self.backups, dry_run=config.dry_run)

        self.profile: Optional[HostProfile] = None
        self.pm: Optional[PackageManager] = None
        self.ssh_policy: Optional[SSHPolicy] = None

    def _track(self, mutation: Optional[Mutation]) -> None:
        if mutation is not None and mutation.changed:
            self.record_change(f"Updated {mutation.path}")

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def probe(self) -> HostProfile:
        """Identify the host. Raises before anything is touched if unsupported."""
        self.section("Detecting Host")
        self.profile = probe_host(self.paths.os_release, self.runner, self.package_manager)
        self.pm = get_package_manager(self.profile, self.runner)
        return self.profile

    def configure_mirrors(self) -> None:
        self.section("Package Mirrors")
        if self.pm.name == "apt" and self.config.mirror_mode != MirrorMode.DEFAULT:
            # https mirrors need ca-certificates in place before sources.list moves
            self.log("Ensuring base packages before switching apt mirrors")
            self._ensure_base_packages()
        configurator = MirrorConfigurator(
            self.profile,
            self.pm,
            self.mutator,
            self.runner,
            self.mirrors,
            self.paths.apt_sources,
        )
        self._track(configurator.apply(self.config.mirror_mode, self.config.custom_mirror_url))

    def update_system(self) -> None:
        self.section("Updating System")
        self.pm.refresh_metadata()
        self.pm.upgrade(self.config.do_upgrade, self.config.do_autoremove)

    def _ensure_base_packages(self) -> bool:
        packages = load_package_manifest(self.manifest, self.pm.name, groups=["base"])
        self.log(f"Packages to ensure: {len(packages)}")
        return self.pm.install(packages)

    def install_base_packages(self) -> None:
        self.section("Installing Base Packages")
        if self._ensure_base_packages():
            self.record_change("Ensured base packages")
        else:
            self.warn("Some base packages could not be installed")

    def configure_pip(self) -> None:
        self.section("pip Mirror")
        configurator = PipMirrorConfigurator(self.mutator, self.mirrors, self.paths.pip_conf)
        self._track(
            configurator.apply(
                self.config.pip_mirror, self.config.mirror_mode, self.config.custom_pip_url
            )
        )

    def setup_container_runtime(self) -> None:
        self.section("Container Runtime")
        if not self.config.install_container_runtime:
            self.log("Docker installation not requested, skipping")
            return
        docker = self.mirrors.get("docker", {})
        installer = ContainerRuntimeInstaller(
            self.pm,
            self.runner,
            self.mutator,
            self.paths.docker_daemon,
            docker.get("vendor_script_url", DEFAULT_VENDOR_SCRIPT),
        )
        if installer.install():
            self.record_change("Ensured Docker")
        else:
            self.warn("Docker is not installed")
        self._track(
            installer.configure_mirror(
                self.config.mirror_mode,
                docker.get("registry_mirrors", []),
                self.config.custom_registry_mirrors,
            )
        )

    def enable_ssh(self) -> None:
        self.section("SSH Service")
        if not has_systemctl():
            self.warn("systemctl not available, not enabling the SSH service")
            return
        enable_service(self.runner, self.profile.ssh_service, now=True, step="ssh")

    def harden_ssh(self) -> None:
        self.section("Hardening SSH")
        guard = SSHHardeningGuard(
            runner=self.runner,
            mutator=self.mutator,
            service=self.profile.ssh_service,
            sshd_config=self.paths.sshd_config,
            dropin_dir=self.paths.sshd_dropin_dir,
            root_home=self.paths.root_home,
            backup_dir=self.config.backup_dir,
            accounts=self.accounts,
        )
        intent = PasswordAuthIntent.from_flags(
            self.config.disable_password_auth, self.config.force_unsafe_ssh
        )
        self.ssh_policy = guard.apply(self.config.ssh_port, intent)
        self.record_change(
            f"SSH port {self.ssh_policy.port}, password login "
            f"{'enabled' if self.ssh_policy.password_auth else 'disabled'}"
        )
        for warning in self.ssh_policy.warnings:
            self.warn(warning)

    def configure_locale(self) -> None:
        self.section("Locale and Timezone")
        configurator = LocaleConfigurator(
            self.pm,
            self.runner,
            self.mutator,
            self.paths.locale_gen,
            self.paths.zoneinfo_dir,
        )
        if configurator.configure_locale(self.config.locale):
            self.record_change(f"Locale {self.config.locale}")
        if configurator.configure_timezone(self.config.timezone):
            self.record_change(f"Timezone {self.config.timezone}")

    def generate_rollback(self) -> Path:
        self.section("Rollback Script")
        return self.rollback.generate()

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def run(self) -> None:
        """
        Apply the baseline.

        The rollback script is generated even when a step aborts the run, so it
        always covers exactly the files that were touched.
        """
        self.log("=" * 60)
        self.log("hostbase - Baseline Apply")
        self.log("=" * 60)
        self.probe()
        self.log(f"Dry Run: {self.dry_run}")
        self.log(f"Backups: {self.config.backup_dir}")

        try:
            self.configure_mirrors()
            self.update_system()
            self.install_base_packages()
            self.configure_pip()
            self.setup_container_runtime()
            self.enable_ssh()
            self.harden_ssh()
            self.configure_locale()
        finally:
            self.generate_rollback()

        self.summarize()
        self.log(f"Log file: {self.config.log_path}")
        self.log(f"Backups and rollback script: {self.config.backup_dir}")
        self.log("Test the new SSH port and key login from a second session before logging out.")


def _reexec_as_root() -> None:
    """Re-run this script through sudo, or exit if that is impossible."""
    if shutil.which("sudo"):
        print("Not running as root, re-executing through sudo...")
        os.execvp("sudo", ["sudo", "-E", sys.executable, *sys.argv])
    print("Error: hostbase must run as root.", file=sys.stderr)
    sys.exit(1)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="hostbase - bring a Linux host to a baseline state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "-y", "--non-interactive",
        action="store_true",
        help="Skip all prompts and use defaults or --config values",
    )
    parser.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Log what would be done without making changes",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="TOML file with run settings",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    args = parser.parse_args(argv)

    if os.geteuid() != 0 and not args.dry_run:
        _reexec_as_root()

    timestamp = run_timestamp()
    try:
        config = resolve_configuration(
            timestamp,
            config_file=args.config,
            interactive=not args.non_interactive,
            dry_run=args.dry_run,
        )
        if not args.non_interactive:
            print("Configuration summary:")
            print("\n".join(config.summary_lines()))
            if not confirm("Continue with these settings?", default=True):
                print("Cancelled.")
                return 0
    except KeyboardInterrupt:
        # Nothing has been touched yet
        print("\nCancelled.")
        return 0
    except HostbaseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        setup_logging(config.log_path, verbose=args.verbose, dry_run=config.dry_run)
    except OSError as e:
        setup_logging(None, verbose=args.verbose, dry_run=config.dry_run)
        logger.warning(f"Cannot write log file {config.log_path} ({e}), logging to console only")

    bootstrap = HostBootstrap(config, verbose=args.verbose)
    try:
        if config.dry_run:
            bootstrap.run()
        else:
            with run_lock(bootstrap.paths.lock_file):
                bootstrap.run()
    except KeyboardInterrupt:
        print("\nAborted.")
        return 1
    except HostbaseError as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            logger.exception("Traceback:")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.verbose:
            logger.exception("Traceback:")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
