"""Package source and pip index mirror configuration."""

import configparser
import io
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .commands import CommandRunner, cmd
from .config import MirrorMode, PipMirrorMode
from .files import Mutation, SafeFileMutator, render_template
from .logs import logger
from .packages import PackageManager
from .probe import HostProfile

UBUNTU_COMPONENTS = "main restricted universe multiverse"
DEBIAN_COMPONENTS = "main contrib non-free non-free-firmware"


def load_mirrors(path: Path) -> dict:
    """Load regional mirror endpoints from mirrors.toml."""
    with open(path, "rb") as f:
        return tomllib.load(f)


@dataclass(frozen=True)
class SourceLine:
    url: str
    suite: str


def distro_family(profile: HostProfile) -> str:
    """Source layout family: 'ubuntu' for Ubuntu, 'debian' for every other apt distro."""
    return "ubuntu" if profile.distro_id == "ubuntu" else "debian"


def render_sources(host: str, family: str, codename: str, timestamp: str) -> str:
    """
    Render a complete sources.list for a mirror host.

    Args:
        host: Mirror base URL (scheme and host, optionally a path prefix)
        family: 'ubuntu' or 'debian'
        codename: Release codename
        timestamp: Run timestamp for the header

    Returns:
        File content
    """
    host = host.rstrip("/")
    if family == "ubuntu":
        url = f"{host}/ubuntu/"
        lines = [
            SourceLine(url, codename),
            SourceLine(url, f"{codename}-updates"),
            SourceLine(url, f"{codename}-backports"),
            SourceLine(url, f"{codename}-security"),
        ]
        components = UBUNTU_COMPONENTS
    else:
        lines = [
            SourceLine(f"{host}/debian/", codename),
            SourceLine(f"{host}/debian/", f"{codename}-updates"),
            SourceLine(f"{host}/debian-security", f"{codename}-security"),
        ]
        components = DEBIAN_COMPONENTS
    return render_template(
        "sources.list.j2",
        {"lines": lines, "components": components, "timestamp": timestamp},
    )


class MirrorConfigurator:
    """Rewrites the apt source list for default / regional / custom modes."""

    def __init__(
        self,
        profile: HostProfile,
        pm: PackageManager,
        mutator: SafeFileMutator,
        runner: CommandRunner,
        mirrors: dict,
        sources_path: Path,
    ):
        self.profile = profile
        self.pm = pm
        self.mutator = mutator
        self.runner = runner
        self.mirrors = mirrors
        self.sources_path = sources_path

    def resolve_codename(self) -> str:
        if self.profile.codename:
            return self.profile.codename
        if distro_family(self.profile) == "ubuntu":
            result = self.runner.query(cmd("lsb_release", "-cs"))
            codename = result.stdout.strip() if result.ok else ""
            fallback = "focal"
        else:
            codename = ""
            fallback = "stable"
        if not codename:
            logger.warning(f"Could not determine release codename, using {fallback}")
            codename = fallback
        return codename

    def resolve_host(self, mode: MirrorMode, custom_url: str) -> str:
        if mode == MirrorMode.REGIONAL:
            return self.mirrors.get("apt", {}).get(distro_family(self.profile), "")
        if mode == MirrorMode.CUSTOM:
            return custom_url.strip()
        return ""

    def apply(self, mode: MirrorMode, custom_url: str = "") -> Optional[Mutation]:
        """
        Rewrite the package source list and refresh metadata.

        Returns:
            Mutation handle, or None if nothing was applied
        """
        if mode == MirrorMode.DEFAULT:
            logger.info("Keeping the distribution's default package mirrors")
            return None
        if self.profile.package_manager != "apt":
            logger.warning(
                f"Mirror mode '{mode.value}' only rewrites apt sources; "
                f"{self.profile.package_manager} sources left unchanged"
            )
            return None

        host = self.resolve_host(mode, custom_url)
        if not host:
            logger.warning(f"No mirror host for mode '{mode.value}', skipping source list rewrite")
            return None

        logger.info(f"Switching apt sources to {host}")
        content = render_sources(
            host,
            distro_family(self.profile),
            self.resolve_codename(),
            self.mutator.backups.timestamp,
        )
        mutation = self.mutator.mutate(self.sources_path, content, mode=0o644)
        self.pm.refresh_metadata()
        return mutation


def merge_pip_conf(existing: Optional[str], index_url: str, timeout: int) -> str:
    """
    Set ``[global] index-url`` and ``timeout`` keeping everything else.

    An existing file that does not parse is replaced.
    """
    parser = configparser.ConfigParser(interpolation=None)
    if existing:
        try:
            parser.read_string(existing)
        except configparser.Error as e:
            logger.warning(f"Existing pip config is not valid INI ({e}), replacing it")
            parser = configparser.ConfigParser(interpolation=None)
    if not parser.has_section("global"):
        parser.add_section("global")
    parser.set("global", "index-url", index_url)
    parser.set("global", "timeout", str(timeout))

    out = io.StringIO()
    parser.write(out)
    return out.getvalue().rstrip("\n") + "\n"


class PipMirrorConfigurator:
    """Points the system-wide pip config at a mirror index."""

    def __init__(self, mutator: SafeFileMutator, mirrors: dict, pip_conf: Path):
        self.mutator = mutator
        self.mirrors = mirrors
        self.pip_conf = pip_conf

    @staticmethod
    def resolve_mode(mode: PipMirrorMode, mirror_mode: MirrorMode) -> PipMirrorMode:
        """'auto' follows the package mirror: regional if it is regional, else none."""
        if mode == PipMirrorMode.AUTO:
            return PipMirrorMode.REGIONAL if mirror_mode == MirrorMode.REGIONAL else PipMirrorMode.NONE
        return mode

    def apply(self, mode: PipMirrorMode, mirror_mode: MirrorMode, custom_url: str = "") -> Optional[Mutation]:
        mode = self.resolve_mode(mode, mirror_mode)
        pip = self.mirrors.get("pip", {})
        if mode == PipMirrorMode.NONE:
            logger.info(f"Keeping pip's default index ({self.pip_conf} unchanged)")
            return None
        if mode == PipMirrorMode.REGIONAL:
            index_url = pip.get("index_url", "")
        else:
            index_url = custom_url.strip()
        if not index_url:
            logger.warning(f"No pip index URL for mode '{mode.value}', skipping pip config")
            return None

        logger.info(f"Configuring pip to use {index_url} ({self.pip_conf})")
        timeout = int(pip.get("timeout", 30))
        return self.mutator.transform(
            self.pip_conf,
            lambda existing: merge_pip_conf(existing, index_url, timeout),
            mode=0o644,
        )
