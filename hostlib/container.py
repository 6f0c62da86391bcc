"""Container runtime (Docker) installation and registry mirror configuration."""

import json
import pwd
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from .commands import CommandRunner, cmd
from .config import MirrorMode
from .files import Mutation, SafeFileMutator
from .logs import logger
from .packages import PackageManager
from .paths import get_sudo_user
from .services import daemon_reload, enable_service, has_systemctl, restart_service

MIRRORS_KEY = "registry-mirrors"
DEFAULT_VENDOR_SCRIPT = "https://get.docker.com"

_MIRRORS_ARRAY = re.compile(r'"registry-mirrors"\s*:\s*\[[^\]]*\]')


def merge_registry_mirrors(existing: Optional[str], mirrors: Sequence[str]) -> str:
    """
    Set ``registry-mirrors`` in daemon.json content, keeping every other key.

    Content that is not a JSON object is patched textually: an existing
    ``registry-mirrors`` array is replaced in place, otherwise the key is
    inserted before the final closing brace.

    Args:
        existing: Current file content (None or blank for a new file)
        mirrors: Mirror URLs

    Returns:
        New file content
    """
    mirrors = list(mirrors)
    if existing is None or not existing.strip():
        return json.dumps({MIRRORS_KEY: mirrors}, indent=2) + "\n"

    try:
        data = json.loads(existing)
    except json.JSONDecodeError as e:
        logger.warning(f"daemon.json does not parse as JSON ({e}); patching it textually")
        return _patch_registry_mirrors(existing, mirrors)

    if not isinstance(data, dict):
        logger.warning("daemon.json is not a JSON object; patching it textually")
        return _patch_registry_mirrors(existing, mirrors)

    data[MIRRORS_KEY] = mirrors
    return json.dumps(data, indent=2) + "\n"


def _patch_registry_mirrors(text: str, mirrors: list[str]) -> str:
    rendered = f'"{MIRRORS_KEY}": {json.dumps(mirrors)}'
    if _MIRRORS_ARRAY.search(text):
        return _MIRRORS_ARRAY.sub(lambda _m: rendered, text, count=1)

    close = text.rfind("}")
    if close == -1:
        logger.warning("daemon.json has no closing brace; writing a fresh object")
        return json.dumps({MIRRORS_KEY: mirrors}, indent=2) + "\n"

    head = text[:close].rstrip()
    body = head[head.find("{") + 1:]
    # a body without any quoted key is an empty object (possibly with comments)
    separator = "" if head.endswith(",") or '"' not in body else ","
    return f"{head}{separator}\n  {rendered}\n{text[close:]}"


class ContainerRuntimeInstaller:
    """Installs Docker (vendor script first, native packages second) and its mirrors."""

    def __init__(
        self,
        pm: PackageManager,
        runner: CommandRunner,
        mutator: SafeFileMutator,
        daemon_json: Path,
        vendor_script_url: str = DEFAULT_VENDOR_SCRIPT,
    ):
        self.pm = pm
        self.runner = runner
        self.mutator = mutator
        self.daemon_json = daemon_json
        self.vendor_script_url = vendor_script_url

    def is_installed(self) -> bool:
        return shutil.which("docker") is not None

    def install_vendor(self) -> bool:
        """Download and run the vendor bootstrap script from a private temp dir."""
        if not shutil.which("curl"):
            self.pm.install(["curl"])
        workdir = Path(tempfile.mkdtemp(prefix="hostbase-docker-"))
        script = workdir / "get-docker.sh"
        try:
            fetched = self.runner.run(
                cmd("curl", "-fsSL", self.vendor_script_url, "-o", script), step="docker"
            )
            if not fetched.ok:
                return False
            return self.runner.run(cmd("sh", script), step="docker").ok
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def install_native(self) -> bool:
        """Install the distribution's engine package, trying renamed forks in order."""
        return self.pm.install_first(self.pm.container_candidates)

    def install(self) -> bool:
        """
        Install the container engine. Never raises.

        Returns:
            True if an engine is (now) installed
        """
        if self.is_installed():
            logger.info("Docker already installed, skipping installation")
            installed = True
        elif self.install_vendor():
            logger.info("Docker installed with the vendor script")
            installed = True
        else:
            logger.warning("Vendor script install failed, trying distribution packages")
            installed = self.install_native()
            if not installed:
                logger.warning("Docker could not be installed, continuing without it")
                return False

        if has_systemctl():
            enable_service(self.runner, "docker", now=True, step="docker")

        user = get_sudo_user()
        if user:
            try:
                pwd.getpwnam(user)
            except KeyError:
                return installed
            if not self.runner.run(cmd("usermod", "-aG", "docker", user), step="docker").ok:
                logger.warning(f"Could not add {user} to the docker group")
        return installed

    def configure_mirror(
        self,
        mode: MirrorMode,
        regional_mirrors: Sequence[str] = (),
        custom_mirrors: Sequence[str] = (),
    ) -> Optional[Mutation]:
        """
        Merge registry mirrors into daemon.json and restart the daemon.

        Returns:
            Mutation handle, or None if nothing was configured
        """
        if mode == MirrorMode.REGIONAL:
            mirrors = list(regional_mirrors)
        elif mode == MirrorMode.CUSTOM:
            mirrors = list(custom_mirrors)
        else:
            mirrors = []
        if not mirrors:
            logger.info("No registry mirrors configured for Docker")
            return None

        logger.info(f"Setting Docker registry mirrors: {', '.join(mirrors)}")
        mutation = self.mutator.transform(
            self.daemon_json,
            lambda existing: merge_registry_mirrors(existing, mirrors),
            mode=0o644,
        )
        if mutation.changed:
            daemon_reload(self.runner, step="docker")
            restart_service(self.runner, "docker", step="docker")
        return mutation
