"""
Log models - typed data containers for the ingestion pipeline.

All entries are immutable dataclasses with strict typing.
No parsing logic lives here.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Iterable


class LogLevel(str, Enum):
    """Severity of a single log entry."""

    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"
    DEBUG = "DEBUG"
    TRACE = "TRACE"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        """Total order used for sorting and ``min_level`` filters."""
        return _RANKS[self]

    @property
    def severity_rank(self) -> int:
        """Coarse order used for threat severity; informational levels tie."""
        return max(self.rank - 3, 0)

    @property
    def counted_as(self) -> LogLevel:
        """Level bucket used for aggregate counts (UNKNOWN counts as INFO)."""
        return LogLevel.INFO if self is LogLevel.UNKNOWN else self


_RANKS: dict[LogLevel, int] = {
    LogLevel.CRITICAL: 6,
    LogLevel.ERROR: 5,
    LogLevel.WARNING: 4,
    LogLevel.INFO: 3,
    LogLevel.DEBUG: 2,
    LogLevel.TRACE: 1,
    LogLevel.UNKNOWN: 0,
}


@dataclass(frozen=True)
class LogEntry:
    """A single structured record derived from one (or a merged multi-line) log line.

    Attributes:
        id: Opaque unique identifier.
        timestamp: When the entry was written (UTC), or ingestion time
            if the line carried no parseable timestamp.
        level: Parsed severity level.
        component: Short subsystem name, ``""`` when absent.
        message: Human-readable summary.
        raw_text: Full original text including merged continuation lines.
        thread_id: Leading ``[pid]`` of Defender lines, ``""`` otherwise.
    """

    id: str
    timestamp: datetime
    level: LogLevel
    component: str
    message: str
    raw_text: str
    thread_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        d["level"] = self.level.value
        return d


@dataclass(frozen=True)
class LevelCounts:
    """Aggregate per-level counts for one entry collection."""

    total: int = 0
    critical: int = 0
    error: int = 0
    warning: int = 0
    info: int = 0
    debug: int = 0
    trace: int = 0

    @classmethod
    def from_entries(cls, entries: Iterable[LogEntry]) -> LevelCounts:
        """Full rescan, used after a reset or for quick file scans."""
        return cls().add(entries)

    def add(self, entries: Iterable[LogEntry]) -> LevelCounts:
        """Return new counts with ``entries`` folded in (O(k))."""
        buckets = {
            "critical": self.critical,
            "error": self.error,
            "warning": self.warning,
            "info": self.info,
            "debug": self.debug,
            "trace": self.trace,
        }
        added = 0
        for entry in entries:
            buckets[entry.level.counted_as.value.lower()] += 1
            added += 1
        return LevelCounts(total=self.total + added, **buckets)

    def percentage(self, level: LogLevel) -> int:
        """Integer share of ``level`` in the total; 0 when empty."""
        if self.total == 0:
            return 0
        count = getattr(self, level.counted_as.value.lower())
        return (count * 100) // self.total

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class MonitoredFile:
    """A log file under observation with cached aggregate counts.

    Rebuilt (never mutated) whenever the file's entry store changes.
    """

    path: str
    name: str
    size_bytes: int
    modified_at: datetime
    entry_count: int = 0
    critical_count: int = 0
    error_count: int = 0
    warning_count: int = 0

    def with_counts(self, counts: LevelCounts) -> MonitoredFile:
        """Return a copy carrying ``counts``."""
        return MonitoredFile(
            path=self.path,
            name=self.name,
            size_bytes=self.size_bytes,
            modified_at=self.modified_at,
            entry_count=counts.total,
            critical_count=counts.critical,
            error_count=counts.error,
            warning_count=counts.warning,
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["modified_at"] = self.modified_at.isoformat()
        return d
