"""
TailCursor - incremental reader for one growing log file.

Tracks the byte offset, last-known size, modification time and file
identity (device + inode).  Each ``poll()`` returns only the complete
lines appended since the previous poll; a trailing partial line is held
back until its newline arrives, or until the file stops growing.
Truncation or replacement of the file produces a reset signal instead
of lines.
"""

from __future__ import annotations

import logging
import os
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path

from core.exceptions import LogFileError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollResult:
    """Outcome of one poll.

    Attributes:
        lines: Newly completed lines, in file order.
        reset: The file shrank or was replaced; the cursor is rewound and
            everything derived from the previous content must be discarded.
        initial: This poll read the file from offset 0.
    """

    lines: tuple[str, ...] = ()
    reset: bool = False
    initial: bool = False


class TailCursor:
    """Byte-offset cursor over a single file.

    Usage::

        cursor = TailCursor("/var/log/app.log")
        result = cursor.poll()
        if result.reset:
            ...  # clear state, then poll again
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self.byte_offset = 0
        self.last_size = 0
        self.last_modified: float | None = None
        self._identity: tuple[int, int] | None = None
        self._partial = b""

    @property
    def path(self) -> Path:
        return self._path

    # ── Public API ──────────────────────────────────────────────────────

    def poll(self) -> PollResult:
        """Read lines appended since the last poll.

        Raises:
            LogFileError: If the file is missing or unreadable.
        """
        st = self._stat()
        identity = (st.st_dev, st.st_ino)
        initial = self._identity is None

        if not initial:
            if identity != self._identity:
                logger.info("TailCursor: rotation detected for %s", self._path)
                self.rewind()
                return PollResult(reset=True)
            if st.st_size < self.last_size:
                logger.info(
                    "TailCursor: file truncated %s (%d -> %d bytes)",
                    self._path, self.last_size, st.st_size,
                )
                self.rewind()
                return PollResult(reset=True)

        self._identity = identity
        self.last_size = st.st_size
        self.last_modified = st.st_mtime

        if st.st_size <= self.byte_offset:
            # Size held still for a whole poll: the writer is done with the line
            return PollResult(lines=self._flush_partial(), initial=initial)

        chunk = self._read_from_offset(st.st_size)
        self.byte_offset += len(chunk)

        data = self._partial + chunk
        *complete, self._partial = data.split(b"\n")
        lines = [_decode(line) for line in complete]
        if initial:
            # A finished or rotated file may lack its final newline
            lines.extend(self._flush_partial())
        return PollResult(lines=tuple(lines), initial=initial)

    def rewind(self) -> None:
        """Forget everything; the next poll re-reads from offset 0."""
        self.byte_offset = 0
        self.last_size = 0
        self.last_modified = None
        self._identity = None
        self._partial = b""

    # ── Internal ────────────────────────────────────────────────────────

    def _flush_partial(self) -> tuple[str, ...]:
        partial, self._partial = self._partial, b""
        return (_decode(partial),) if partial else ()

    def _stat(self) -> os.stat_result:
        try:
            st = self._path.stat()
        except FileNotFoundError:
            raise LogFileError(
                str(self._path), f"Log file not found: {self._path}", {"reason": "not_found"}
            ) from None
        except OSError as exc:
            raise LogFileError(
                str(self._path), f"Cannot access log file {self._path}: {exc.strerror}"
            ) from exc

        if not stat_module.S_ISREG(st.st_mode):
            raise LogFileError(str(self._path), f"Not a regular file: {self._path}")
        return st

    def _read_from_offset(self, size: int) -> bytes:
        try:
            with open(self._path, "rb") as fh:
                fh.seek(self.byte_offset)
                return fh.read(size - self.byte_offset)
        except OSError as exc:
            raise LogFileError(
                str(self._path), f"Cannot read log file {self._path}: {exc.strerror}"
            ) from exc


def _decode(line: bytes) -> str:
    return line.decode("utf-8", errors="replace").rstrip("\r")
