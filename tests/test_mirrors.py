"""Tests for package source and pip mirror configuration."""

from __future__ import annotations

import configparser

import pytest

from hostlib.commands import CommandRunner
from hostlib.config import MirrorMode, PipMirrorMode
from hostlib.files import BackupSet, SafeFileMutator
from hostlib.mirrors import (
    MirrorConfigurator,
    PipMirrorConfigurator,
    load_mirrors,
    merge_pip_conf,
    render_sources,
)
from hostlib.packages import Apt, Dnf
from hostlib.paths import MIRRORS_CONFIG
from hostlib.probe import HostProfile

TS = "2024-05-01-120000"
MIRROR = "https://mirrors.tuna.tsinghua.edu.cn"


class TestRenderSources:
    def test_ubuntu(self):
        text = render_sources(MIRROR + "/", "ubuntu", "jammy", TS)
        components = "main restricted universe multiverse"
        assert text == (
            f"# Managed by hostbase ({TS})\n"
            f"deb {MIRROR}/ubuntu/ jammy {components}\n"
            f"deb {MIRROR}/ubuntu/ jammy-updates {components}\n"
            f"deb {MIRROR}/ubuntu/ jammy-backports {components}\n"
            f"deb {MIRROR}/ubuntu/ jammy-security {components}\n"
        )

    def test_debian_security_path(self):
        text = render_sources(MIRROR, "debian", "bookworm", TS)
        assert f"deb {MIRROR}/debian-security bookworm-security " in text
        assert f"deb {MIRROR}/debian/ bookworm-updates " in text
        assert "non-free-firmware" in text
        assert len([line for line in text.splitlines() if line.startswith("deb ")]) == 3


@pytest.fixture
def sources(host):
    host.apt_sources.parent.mkdir(parents=True)
    host.apt_sources.write_text("deb http://archive.ubuntu.com/ubuntu jammy main\n")
    return host.apt_sources


def configurator(tmp_path, sources, profile, runner=None, pm_cls=Apt):
    runner = runner or CommandRunner()
    mutator = SafeFileMutator(BackupSet(tmp_path / "backups", TS), dry_run=runner.dry_run)
    return MirrorConfigurator(
        profile, pm_cls(runner), mutator, runner, load_mirrors(MIRRORS_CONFIG), sources
    )


UBUNTU = HostProfile("ubuntu", "22.04", "jammy", "apt", "ssh")


class TestMirrorConfigurator:
    def test_default_mode_touches_nothing(self, tmp_path, sources, fake_run):
        mc = configurator(tmp_path, sources, UBUNTU)
        assert mc.apply(MirrorMode.DEFAULT) is None
        assert mc.runner.history == []
        assert "archive.ubuntu.com" in sources.read_text()

    def test_regional_rewrites_and_refreshes(self, tmp_path, sources, fake_run):
        mc = configurator(tmp_path, sources, UBUNTU)

        mutation = mc.apply(MirrorMode.REGIONAL)

        assert mutation.record.backup.read_text().startswith("deb http://archive.ubuntu.com")
        assert f"deb {MIRROR}/ubuntu/ jammy-security" in sources.read_text()
        assert [c.argv for c in mc.runner.history] == [("apt-get", "update", "-y")]

    def test_custom_host(self, tmp_path, sources, fake_run):
        mc = configurator(tmp_path, sources, UBUNTU)
        mc.apply(MirrorMode.CUSTOM, " https://mirror.example.org/ ")
        assert "deb https://mirror.example.org/ubuntu/ jammy " in sources.read_text()

    def test_custom_without_url_is_skipped(self, tmp_path, sources, fake_run):
        mc = configurator(tmp_path, sources, UBUNTU)
        assert mc.apply(MirrorMode.CUSTOM, "") is None
        assert "archive.ubuntu.com" in sources.read_text()

    def test_non_apt_host_left_alone(self, tmp_path, sources, fake_run):
        fedora = HostProfile("fedora", "40", "", "dnf", "sshd")
        mc = configurator(tmp_path, sources, fedora, pm_cls=Dnf)
        assert mc.apply(MirrorMode.REGIONAL) is None
        assert mc.runner.history == []

    def test_codename_from_lsb_release(self, tmp_path, sources, fake_run):
        fake_run.on("lsb_release", "-cs", stdout="noble\n")
        mc = configurator(tmp_path, sources, HostProfile("ubuntu", "24.04", "", "apt", "ssh"))
        assert mc.resolve_codename() == "noble"

    def test_codename_fallbacks(self, tmp_path, sources, fake_run):
        fake_run.on("lsb_release", returncode=127)
        ubuntu = configurator(tmp_path, sources, HostProfile("ubuntu", "", "", "apt", "ssh"))
        debian = configurator(tmp_path, sources, HostProfile("debian", "", "", "apt", "ssh"))
        assert ubuntu.resolve_codename() == "focal"
        assert debian.resolve_codename() == "stable"

    def test_dry_run_plans_refresh_without_writing(self, tmp_path, sources, fake_run):
        mc = configurator(tmp_path, sources, UBUNTU, runner=CommandRunner(dry_run=True))
        mc.apply(MirrorMode.REGIONAL)
        assert "archive.ubuntu.com" in sources.read_text()
        assert [c.argv for c in mc.runner.history] == [("apt-get", "update", "-y")]
        assert not fake_run.ran("apt-get")


class TestPipConf:
    def test_merge_keeps_other_settings(self):
        existing = "[global]\nindex-url = https://pypi.org/simple\ntrusted-host = x\n\n[install]\nuser = false\n"
        parser = configparser.ConfigParser(interpolation=None)
        parser.read_string(merge_pip_conf(existing, "https://mirror/simple", 30))

        assert parser["global"]["index-url"] == "https://mirror/simple"
        assert parser["global"]["timeout"] == "30"
        assert parser["global"]["trusted-host"] == "x"
        assert parser["install"]["user"] == "false"

    def test_merge_replaces_unparseable_file(self):
        text = merge_pip_conf("index-url = no section\n", "https://mirror/simple", 30)
        assert text == "[global]\nindex-url = https://mirror/simple\ntimeout = 30\n"

    @pytest.mark.parametrize(
        "mode, mirror_mode, expected",
        [
            (PipMirrorMode.AUTO, MirrorMode.REGIONAL, PipMirrorMode.REGIONAL),
            (PipMirrorMode.AUTO, MirrorMode.CUSTOM, PipMirrorMode.NONE),
            (PipMirrorMode.AUTO, MirrorMode.DEFAULT, PipMirrorMode.NONE),
            (PipMirrorMode.CUSTOM, MirrorMode.DEFAULT, PipMirrorMode.CUSTOM),
        ],
    )
    def test_auto_follows_package_mirror(self, mode, mirror_mode, expected):
        assert PipMirrorConfigurator.resolve_mode(mode, mirror_mode) == expected

    def test_regional_creates_pip_conf(self, tmp_path, host):
        backups = BackupSet(tmp_path / "backups", TS)
        pip = PipMirrorConfigurator(SafeFileMutator(backups), load_mirrors(MIRRORS_CONFIG), host.pip_conf)

        mutation = pip.apply(PipMirrorMode.AUTO, MirrorMode.REGIONAL)

        assert mutation.created
        assert "index-url = https://pypi.tuna.tsinghua.edu.cn/simple" in host.pip_conf.read_text()
        assert backups.created == [host.pip_conf]

    def test_none_leaves_pip_alone(self, tmp_path, host):
        pip = PipMirrorConfigurator(
            SafeFileMutator(BackupSet(tmp_path / "b", TS)), load_mirrors(MIRRORS_CONFIG), host.pip_conf
        )
        assert pip.apply(PipMirrorMode.NONE, MirrorMode.REGIONAL) is None
        assert not host.pip_conf.exists()
