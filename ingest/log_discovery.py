"""
Log discovery - locate candidate log files and describe them.

Scans a log directory and its ``rotated/`` subdirectory for files with
an accepted extension, newest first, each with a quick entry/level count.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from config.settings import get_settings
from core.exceptions import LogFileError
from events.log_models import LevelCounts, MonitoredFile
from ingest.line_parser import LineParser

logger = logging.getLogger(__name__)


def has_allowed_extension(path: str | os.PathLike[str], allowed: list[str] | None = None) -> bool:
    """Return True if ``path`` carries one of the accepted extensions."""
    extensions = [e.lower() for e in (allowed if allowed is not None else get_settings().ALLOWED_EXTENSIONS)]
    return Path(path).suffix.lower() in extensions


def describe_file(path: str | os.PathLike[str]) -> MonitoredFile:
    """Build a ``MonitoredFile`` (without counts) from the file's metadata.

    Raises:
        LogFileError: If the file or its directory is missing or unreadable.
    """
    p = Path(path)
    if not p.parent.is_dir():
        raise LogFileError(str(p), f"Log directory not found: {p.parent}", {"reason": "not_found"})
    if not p.exists():
        raise LogFileError(str(p), f"Log file not found: {p}", {"reason": "not_found"})
    if not p.is_file():
        raise LogFileError(str(p), f"Not a regular file: {p}")
    if not os.access(p, os.R_OK):
        raise LogFileError(str(p), f"Log file is not readable: {p}")

    st = p.stat()
    return MonitoredFile(
        path=str(p),
        name=p.name,
        size_bytes=st.st_size,
        modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
    )


def discover_log_files(
    directory: str | os.PathLike[str] | None = None,
    *,
    parser: LineParser | None = None,
) -> list[MonitoredFile]:
    """List log files under ``directory`` (and ``directory/rotated``), newest first.

    Raises:
        LogFileError: If ``directory`` does not exist.
    """
    settings = get_settings()
    base = Path(directory or settings.LOG_DIRECTORY)
    if not base.is_dir():
        raise LogFileError(str(base), f"Log directory not found: {base}", {"reason": "not_found"})

    parser = parser or LineParser()
    found: list[MonitoredFile] = []

    for folder in (base, base / "rotated"):
        if not folder.is_dir():
            continue
        for candidate in sorted(folder.iterdir()):
            if not candidate.is_file() or not has_allowed_extension(candidate):
                continue
            try:
                found.append(_scan(candidate, parser))
            except (LogFileError, OSError) as exc:
                logger.warning("Log discovery: skipping %s: %s", candidate, exc)

    found.sort(key=lambda f: f.modified_at, reverse=True)
    return found


def _scan(path: Path, parser: LineParser) -> MonitoredFile:
    """Describe a file and attach level counts from a full parse."""
    described = describe_file(path)
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        entries = parser.parse_batch(fh)
    return described.with_counts(LevelCounts.from_entries(entries))
