"""
ThreadGrouper - groups Defender entries by the ``[pid]`` thread id.

Where the correlation engine buckets by component and time window, this
pass follows one daemon thread from its first to its last line and
reports it as a single ``ThreadEvent`` with an outcome status.  Entries
without a thread id are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from events.log_models import LogEntry, LogLevel
from realtime.correlation_engine import ThreatType

logger = logging.getLogger(__name__)


class ThreadStatus(str, Enum):
    """Outcome of a thread's run."""

    COMPLETED = "COMPLETED"
    IN_PROGRESS = "IN_PROGRESS"
    FAILED = "FAILED"
    WARNING = "WARNING"


# (type, keywords) in priority order over all messages of the thread
_TYPE_RULES: tuple[tuple[ThreatType, tuple[str, ...]], ...] = (
    (ThreatType.THREAT, ("threat", "malware", "virus")),
    (ThreatType.QUARANTINE, ("quarantine",)),
    (ThreatType.SCAN, ("scan",)),
    (ThreatType.UPDATE, ("update", "definition")),
    (ThreatType.REALTIME, ("real-time", "realtime")),
    (ThreatType.CLOUD, ("cloud",)),
)

# More error lines than this turn a thread from WARNING into FAILED
_FAILED_ERROR_COUNT = 2


@dataclass(frozen=True)
class ThreadEvent:
    """All entries written by one thread.

    Attributes:
        thread_id: The ``[pid]`` shared by the entries.
        type: Heuristic classification from the combined messages.
        status: FAILED/WARNING on errors, else COMPLETED when the last
            line says so, else IN_PROGRESS.
        start_time: Earliest entry timestamp.
        end_time: Latest entry timestamp; ``None`` when equal to the start.
        error_count: ERROR and CRITICAL entries.
        warning_count: WARNING entries.
        entries: The thread's entries, oldest first.
    """

    thread_id: str
    type: ThreatType
    status: ThreadStatus
    start_time: datetime
    end_time: datetime | None
    error_count: int
    warning_count: int
    entries: tuple[LogEntry, ...]

    @property
    def duration(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "thread_id": self.thread_id,
            "type": self.type.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "entry_ids": [e.id for e in self.entries],
        }


def group_by_thread(entries: Iterable[LogEntry]) -> tuple[ThreadEvent, ...]:
    """Build one event per thread id, most recently started first."""
    threads: dict[str, list[LogEntry]] = {}
    for entry in entries:
        if entry.thread_id:
            threads.setdefault(entry.thread_id, []).append(entry)

    events = [_build_event(thread_id, grouped) for thread_id, grouped in threads.items()]
    events.sort(key=lambda e: e.thread_id)
    events.sort(key=lambda e: e.start_time, reverse=True)
    return tuple(events)


def _build_event(thread_id: str, grouped: list[LogEntry]) -> ThreadEvent:
    ordered = sorted(grouped, key=lambda e: e.timestamp)
    start, end = ordered[0].timestamp, ordered[-1].timestamp
    error_count = sum(1 for e in grouped if e.level in (LogLevel.ERROR, LogLevel.CRITICAL))
    warning_count = sum(1 for e in grouped if e.level is LogLevel.WARNING)

    if error_count:
        status = ThreadStatus.FAILED if error_count > _FAILED_ERROR_COUNT else ThreadStatus.WARNING
    elif "complete" in grouped[-1].message.lower():
        status = ThreadStatus.COMPLETED
    else:
        status = ThreadStatus.IN_PROGRESS

    return ThreadEvent(
        thread_id=thread_id,
        type=_detect_type(grouped),
        status=status,
        start_time=start,
        end_time=None if start == end else end,
        error_count=error_count,
        warning_count=warning_count,
        entries=tuple(ordered),
    )


def _detect_type(grouped: list[LogEntry]) -> ThreatType:
    combined = " ".join(e.message.lower() for e in grouped)
    for threat_type, keywords in _TYPE_RULES:
        if any(kw in combined for kw in keywords):
            return threat_type
    return ThreatType.SCAN
