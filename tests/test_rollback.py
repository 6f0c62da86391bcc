"""Tests for rollback script generation."""

from __future__ import annotations

import os
import shutil
import subprocess

import pytest

from hostlib.files import BackupSet, SafeFileMutator
from hostlib.rollback import RollbackGenerator, render_rollback

TS = "2024-05-01-120000"


@pytest.fixture
def touched(tmp_path):
    """A BackupSet after a run that changed two files and created one."""
    backups = BackupSet(tmp_path / "backups", TS)
    mutator = SafeFileMutator(backups)
    etc = tmp_path / "etc"
    (etc / "apt").mkdir(parents=True)
    (etc / "ssh dir").mkdir()

    sources = etc / "apt" / "sources.list"
    sources.write_text("deb http://archive.ubuntu.com/ubuntu jammy main\n")
    sshd = etc / "ssh dir" / "sshd_config"
    sshd.write_text("Port 22\nPasswordAuthentication yes\n")
    created = etc / "pip.conf"

    mutator.mutate(sources, "deb https://mirror/ubuntu/ jammy main\n")
    mutator.mutate(sshd, "Port 2222\n")
    mutator.mutate(sshd, "Port 2200\n")
    mutator.mutate(created, "[global]\n")
    return backups, {
        sources: "deb http://archive.ubuntu.com/ubuntu jammy main\n",
        sshd: "Port 22\nPasswordAuthentication yes\n",
    }, created


class TestRenderRollback:
    def test_restores_newest_first(self, touched):
        backups, originals, _ = touched
        script = render_rollback(backups)
        lines = [line for line in script.splitlines() if line.startswith("cp -a")]
        assert len(lines) == 2
        assert "sshd_config" in lines[0]
        assert "sources.list" in lines[1]

    def test_removes_created_files(self, touched):
        backups, _, created = touched
        script = render_rollback(backups)
        assert f"rm -f {created}" in script

    def test_empty_backup_set_is_a_valid_noop(self, tmp_path):
        script = render_rollback(BackupSet(tmp_path / "b", TS))
        assert script.startswith("#!/usr/bin/env bash\n")
        assert "cp -a" not in script


class TestRollbackGenerator:
    def test_writes_executable_script_and_manifest(self, touched):
        backups, _, _ = touched
        path = RollbackGenerator(backups).generate()

        assert path == backups.directory / "rollback.sh"
        assert os.access(path, os.X_OK)
        assert (backups.directory / "manifest.json").exists()

    def test_dry_run_writes_nothing(self, tmp_path):
        backups = BackupSet(tmp_path / "backups", TS)
        path = RollbackGenerator(backups, dry_run=True).generate()
        assert not path.exists()
        assert not backups.directory.exists()

    @pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
    def test_running_script_restores_pre_run_content(self, touched):
        backups, originals, created = touched
        script = RollbackGenerator(backups).generate()

        subprocess.run(["bash", str(script)], check=True, capture_output=True)

        for path, content in originals.items():
            assert path.read_text() == content
        assert not created.exists()
