"""File naming and housekeeping for the on-disk message queue."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

INFILE_PREFIX = "candidate"
OUTFILE_PREFIX = "code_complete"
INIT_STEP = -1


def point_path(inbox: Path, step: int) -> Path:
    return inbox / f"{INFILE_PREFIX}.{step}"


def result_path(outbox: Path, step: int) -> Path:
    return outbox / f"{OUTFILE_PREFIX}.{step}"


def init_path(inbox: Path) -> Path:
    return point_path(inbox, INIT_STEP)


def is_ready(path: Path) -> bool:
    """True once ``path`` is a non-empty regular file."""

    try:
        stat = path.stat()
    except FileNotFoundError:
        return False
    return path.is_file() and stat.st_size > 0


def clear_inbox(inbox: Path) -> int:
    """Delete pending point files, keeping any initialization file.

    Returns the number of files removed.
    """

    if not inbox.is_dir():
        raise NotADirectoryError(f"Inbox is not a directory: {inbox}")

    keep = init_path(inbox).name
    removed = 0
    for entry in inbox.iterdir():
        if entry.name == keep or not entry.name.startswith(INFILE_PREFIX):
            continue
        if not entry.is_file():
            continue
        entry.unlink(missing_ok=True)
        removed += 1
    if removed:
        logger.info("Removed %d stale point files from %s", removed, inbox)
    return removed
