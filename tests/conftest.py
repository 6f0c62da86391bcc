"""Shared fixtures: a fake subprocess layer, a fake PATH and a scratch host root."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from hostlib.logs import logger
from hostlib.paths import HostPaths


class FakeSubprocess:
    """Stands in for subprocess.run inside hostlib.commands.

    Rules match on an argv prefix; the program is compared by basename so
    ``/usr/sbin/sshd`` matches ``sshd``. Unmatched commands succeed silently.
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.envs: list[dict | None] = []
        self.rules: list[tuple[tuple, int, str, str]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.rules.insert(0, (prefix, returncode, stdout, stderr))

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        self.envs.append(kwargs.get("env"))
        normalized = [Path(argv[0]).name, *argv[1:]]
        for prefix, rc, out, err in self.rules:
            if tuple(normalized[: len(prefix)]) == prefix:
                return subprocess.CompletedProcess(argv, rc, out, err)
        return subprocess.CompletedProcess(argv, 0, "", "")

    def ran(self, *prefix: str) -> bool:
        return any(tuple([Path(c[0]).name, *c[1:]][: len(prefix)]) == prefix for c in self.calls)


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeSubprocess()
    monkeypatch.setattr("hostlib.commands.subprocess.run", fake)
    return fake


@pytest.fixture
def which(monkeypatch):
    """Control which executables appear to be on PATH."""
    available: set[str] = set()

    def fake_which(name, *args, **kwargs):
        return f"/usr/bin/{name}" if name in available else None

    monkeypatch.setattr("shutil.which", fake_which)
    return available


@pytest.fixture
def host(tmp_path) -> HostPaths:
    """HostPaths re-rooted into a scratch directory."""
    paths = HostPaths().under(tmp_path / "host")
    paths.os_release.parent.mkdir(parents=True, exist_ok=True)
    return paths


@pytest.fixture(autouse=True)
def _reset_logger(monkeypatch):
    monkeypatch.delenv("SUDO_USER", raising=False)
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for flt in list(logger.filters):
        logger.removeFilter(flt)
    logger.propagate = True


UBUNTU_OS_RELEASE = """\
NAME="Ubuntu"
VERSION_ID="22.04"
VERSION="22.04.4 LTS (Jammy Jellyfish)"
VERSION_CODENAME=jammy
ID=ubuntu
ID_LIKE=debian
"""

DEBIAN_OS_RELEASE = """\
PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"
VERSION_ID="12"
VERSION_CODENAME=bookworm
ID=debian
"""

CENTOS7_OS_RELEASE = """\
NAME="CentOS Linux"
VERSION="7 (Core)"
ID="centos"
ID_LIKE="rhel fedora"
VERSION_ID="7"
"""
