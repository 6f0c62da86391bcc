"""Tests for locale and timezone configuration."""

from __future__ import annotations

import pytest

from hostlib.commands import CommandRunner
from hostlib.files import BackupSet, SafeFileMutator
from hostlib.localization import (
    LocaleConfigurator,
    enable_locale_gen,
    locale_charset,
    locale_language,
)
from hostlib.packages import Apt, Dnf, Pacman

TS = "2024-05-01-120000"


def test_locale_parts():
    assert locale_charset("zh_CN.UTF-8") == "UTF-8"
    assert locale_charset("de_DE.UTF-8@euro") == "UTF-8"
    assert locale_charset("C") == "ISO-8859-1"
    assert locale_language("zh_CN.UTF-8") == "zh"


class TestEnableLocaleGen:
    def test_uncomments(self):
        text = "# en_US.UTF-8 UTF-8\n# zh_CN.UTF-8 UTF-8\n"
        assert enable_locale_gen(text, "zh_CN.UTF-8") == "# en_US.UTF-8 UTF-8\nzh_CN.UTF-8 UTF-8\n"

    def test_appends_missing(self):
        assert enable_locale_gen("# header", "en_US.UTF-8") == "# header\nen_US.UTF-8 UTF-8\n"

    def test_already_enabled(self):
        text = "zh_CN.UTF-8 UTF-8\n"
        assert enable_locale_gen(text, "zh_CN.UTF-8") == text

    def test_similar_name_not_matched(self):
        text = "# zh_CN.UTF-8@pinyin UTF-8\n"
        assert enable_locale_gen(text, "zh_CN.UTF-8").endswith("\nzh_CN.UTF-8 UTF-8\n")


@pytest.fixture
def factory(host, tmp_path):
    def make(pm_cls=Apt, dry_run=False):
        runner = CommandRunner(dry_run=dry_run)
        mutator = SafeFileMutator(BackupSet(tmp_path / "backups", TS), dry_run=dry_run)
        return LocaleConfigurator(pm_cls(runner), runner, mutator, host.locale_gen, host.zoneinfo_dir)

    return make


class TestLocale:
    def test_debian_flow(self, host, factory, which, fake_run):
        which.add("update-locale")
        host.locale_gen.write_text("# zh_CN.UTF-8 UTF-8\n")
        lc = factory()

        assert lc.configure_locale("zh_CN.UTF-8")

        assert host.locale_gen.read_text() == "zh_CN.UTF-8 UTF-8\n"
        argvs = [c.argv for c in lc.runner.history]
        assert argvs == [
            ("apt-get", "install", "-y", "--no-install-recommends", "locales"),
            ("locale-gen",),
            ("update-locale", "LANG=zh_CN.UTF-8"),
        ]

    def test_rpm_family_uses_langpack(self, factory, which, fake_run):
        lc = factory(Dnf)
        assert lc.configure_locale("zh_CN.UTF-8")
        argvs = [c.argv for c in lc.runner.history]
        assert argvs == [
            ("dnf", "install", "-y", "glibc-langpack-zh"),
            ("localectl", "set-locale", "LANG=zh_CN.UTF-8"),
        ]

    def test_missing_locale_gen_skips(self, factory, which, fake_run):
        lc = factory(Pacman)
        assert not lc.configure_locale("en_US.UTF-8")
        assert not fake_run.ran("locale-gen")

    def test_empty_locale_skipped(self, factory, fake_run):
        lc = factory()
        assert not lc.configure_locale("")
        assert lc.runner.history == []


class TestTimezone:
    def test_sets_existing_zone(self, host, factory, fake_run):
        zone = host.zoneinfo_dir / "Asia" / "Shanghai"
        zone.parent.mkdir(parents=True)
        zone.write_bytes(b"TZif")
        lc = factory()

        assert lc.configure_timezone("Asia/Shanghai")
        assert lc.runner.history[-1].argv == ("timedatectl", "set-timezone", "Asia/Shanghai")

    def test_unknown_zone_skipped(self, factory, fake_run):
        lc = factory()
        assert not lc.configure_timezone("Mars/Olympus")
        assert lc.runner.history == []
