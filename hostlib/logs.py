"""Logging setup: full DEBUG trail to the run log, INFO and up to the console."""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "hostbase"

logger = logging.getLogger(LOGGER_NAME)


class DryRunFilter(logging.Filter):
    """Prefix every record with [DRY-RUN] so the log reads as a plan."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "_dry_run_prefixed", False):
            record.msg = f"[DRY-RUN] {record.msg}"
            record._dry_run_prefixed = True
        return True


def setup_logging(
    log_file: Optional[Path] = None,
    verbose: bool = False,
    dry_run: bool = False,
) -> logging.Logger:
    """
    Configure the hostbase logger.

    Args:
        log_file: Run log path (parent directories are created)
        verbose: Show DEBUG messages on the console
        dry_run: Prefix every message with [DRY-RUN]

    Returns:
        The configured logger
    """
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for flt in list(logger.filters):
        logger.removeFilter(flt)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console)

    if log_file:
        log_file = Path(log_file)
        if not log_file.parent.exists():
            os.makedirs(log_file.parent, mode=0o700, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(
            logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(fh)

    if dry_run:
        logger.addFilter(DryRunFilter())

    return logger
