"""Rollback script generation from a run's BackupSet."""

from pathlib import Path

from .files import BackupSet, render_template
from .logs import logger

ROLLBACK_NAME = "rollback.sh"


def render_rollback(backups: BackupSet) -> str:
    """
    Render a self-contained bash script that undoes the run.

    Records are restored newest first, then files the run created are removed.
    """
    records = [
        {
            "original": r.original,
            "original_dir": r.original.parent,
            "backup": r.backup,
        }
        for r in reversed(backups.records)
    ]
    return render_template(
        "rollback.sh.j2",
        {
            "timestamp": backups.timestamp,
            "backup_dir": backups.directory,
            "records": records,
            "created": list(reversed(backups.created)),
        },
    )


class RollbackGenerator:
    """Writes rollback.sh and manifest.json into the backup directory."""

    def __init__(self, backups: BackupSet, dry_run: bool = False):
        self.backups = backups
        self.dry_run = dry_run

    @property
    def script_path(self) -> Path:
        return self.backups.directory / ROLLBACK_NAME

    def generate(self) -> Path:
        """
        Emit the rollback script for everything touched so far.

        Returns:
            Path of the (planned, in dry-run) script
        """
        content = render_rollback(self.backups)
        count = len(self.backups.records)
        logger.info(f"Writing rollback script {self.script_path} ({count} backups)")
        logger.debug(content)
        if self.dry_run:
            return self.script_path

        self.backups.directory.mkdir(parents=True, exist_ok=True)
        self.script_path.write_text(content)
        self.script_path.chmod(0o755)
        self.backups.write_manifest()
        logger.info(f"Rollback script written: {self.script_path} (review it before running)")
        return self.script_path

