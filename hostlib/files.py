"""Backed-up file mutation and templating.

Every system file hostbase changes goes through ``SafeFileMutator``: the
existing file is copied into the run's backup directory before the first write,
and the copy is recorded in the run's ``BackupSet``. The set is what the
rollback script is generated from.
"""

import json
import os
import shlex
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .logs import logger
from .paths import TEMPLATES_DIR

BACKUP_MARKER = ".bak."

_template_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)
_template_env.filters["q"] = lambda value: shlex.quote(str(value))


def render_template(name: str, context: dict) -> str:
    """
    Render one of the bundled Jinja2 templates.

    Args:
        name: Template file name under hostlib/templates
        context: Variables for the template

    Returns:
        Rendered text
    """
    return _template_env.get_template(name).render(**context)


def backup_name(path: Path, timestamp: str) -> str:
    """Backup artifact name: ``<basename>.bak.<timestamp>``."""
    return f"{path.name}{BACKUP_MARKER}{timestamp}"


@dataclass(frozen=True)
class MutationRecord:
    """One backed-up file: where it lived and where its copy is."""

    original: Path
    backup: Path
    timestamp: str


@dataclass
class BackupSet:
    """
    Append-only record of the backups taken during one run.

    ``created`` lists files the run wrote that did not exist before; a rollback
    removes them.
    """

    directory: Path
    timestamp: str
    records: list[MutationRecord] = field(default_factory=list)
    created: list[Path] = field(default_factory=list)

    def record_for(self, path: Path) -> Optional[MutationRecord]:
        for record in self.records:
            if record.original == path:
                return record
        return None

    def touched(self, path: Path) -> bool:
        return self.record_for(path) is not None or path in self.created

    def next_backup_path(self, path: Path) -> Path:
        """Pick an artifact path, suffixing ``.N`` if another file took the name."""
        candidate = self.directory / backup_name(path, self.timestamp)
        taken = {r.backup for r in self.records}
        n = 1
        while candidate in taken:
            candidate = self.directory / f"{backup_name(path, self.timestamp)}.{n}"
            n += 1
        return candidate

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "records": [
                {"original": str(r.original), "backup": str(r.backup)} for r in self.records
            ],
            "created": [str(p) for p in self.created],
        }

    def write_manifest(self) -> Path:
        """Persist the set as manifest.json in the backup directory."""
        manifest = self.directory / "manifest.json"
        self.directory.mkdir(parents=True, exist_ok=True)
        manifest.write_text(json.dumps(self.to_dict(), indent=2) + "\n")
        return manifest


@dataclass
class Mutation:
    """Handle returned by SafeFileMutator for one file."""

    path: Path
    record: Optional[MutationRecord]
    created: bool
    changed: bool


class SafeFileMutator:
    """Backup-then-write for system files, honoring dry-run."""

    def __init__(self, backups: BackupSet, dry_run: bool = False):
        self.backups = backups
        self.dry_run = dry_run

    def mutate(self, path: Union[str, Path], content: str, mode: Optional[int] = None) -> Mutation:
        """
        Replace a file's content.

        Args:
            path: Target file path
            content: Full desired file content
            mode: File permissions for a newly created file (e.g., 0o644)

        Returns:
            Mutation handle
        """
        return self.transform(path, lambda _existing: content, mode=mode)

    def transform(
        self,
        path: Union[str, Path],
        producer: Callable[[Optional[str]], str],
        mode: Optional[int] = None,
    ) -> Mutation:
        """
        Rewrite a file from its current content.

        Args:
            path: Target file path
            producer: Called with the current text (None if the file is absent),
                returns the full desired text
            mode: File permissions for a newly created file

        Returns:
            Mutation handle
        """
        path = Path(path).absolute()
        existed = path.exists()
        current = path.read_text() if existed else None
        content = producer(current)

        if existed and current == content:
            logger.info(f"File {path} already up to date")
            return Mutation(path, self.backups.record_for(path), False, False)

        record = self._backup(path) if existed else None

        logger.info(f"Writing file: {path}")
        logger.debug(f"--- {path} ---\n{content}")
        created = not existed and not self.backups.touched(path)
        if created:
            self.backups.created.append(path)

        if not self.dry_run:
            _atomic_write(path, content, mode)

        return Mutation(path, record, created, True)

    def _backup(self, path: Path) -> Optional[MutationRecord]:
        existing = self.backups.record_for(path)
        if existing is not None:
            logger.debug(f"{path} already backed up to {existing.backup}")
            return existing
        if path in self.backups.created:
            return None

        backup_path = self.backups.next_backup_path(path)
        logger.info(f"Backing up {path} to {backup_path}")
        if not self.dry_run:
            self.backups.directory.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, backup_path)

        record = MutationRecord(path, backup_path, self.backups.timestamp)
        self.backups.records.append(record)
        return record


def _atomic_write(path: Path, content: str, mode: Optional[int]) -> None:
    """Write via a temp file in the target directory, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        mode = path.stat().st_mode & 0o7777
    elif mode is None:
        mode = 0o644
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            delete=False,
            suffix=".tmp",
        ) as tmp:
            tmp.write(content)
            tmp_path = tmp.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        Path(tmp_path).rename(path)
        tmp_path = None
    finally:
        if tmp_path and Path(tmp_path).exists():
            Path(tmp_path).unlink()
