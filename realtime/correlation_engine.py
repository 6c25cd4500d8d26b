"""
CorrelationEngine - groups raw entries into higher-level security events.

Entries are bucketed by ``(component, tumbling time window)``; each
bucket becomes one ``ThreatEvent`` whose type, severity, status and
description are derived with keyword heuristics.

Design principles:
  - Pure: the same entry sequence always yields the same report
  - Explainable: every event keeps back-references to its entries
  - Window size is configurable (``CORRELATION_WINDOW_SECONDS``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from config.settings import get_settings
from events.log_models import LogEntry, LogLevel

logger = logging.getLogger(__name__)


class ThreatType(str, Enum):
    """Heuristic classification of a correlated event."""

    THREAT = "Threat Detected"
    SCAN = "Scan Event"
    UPDATE = "Definition Update"
    NETWORK = "Network Event"
    REALTIME = "Real-time Protection"
    QUARANTINE = "Quarantine Action"
    CLOUD = "Cloud Service"


class ThreatStatus(str, Enum):
    """Heuristic outcome of a correlated event."""

    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    BLOCKED = "BLOCKED"
    ALLOWED = "ALLOWED"
    QUARANTINED = "QUARANTINED"


# Type rules in priority order: (type, message keywords, component keywords)
_TYPE_RULES: tuple[tuple[ThreatType, tuple[str, ...], tuple[str, ...]], ...] = (
    (ThreatType.THREAT, ("threat", "malware", "virus"), ()),
    (ThreatType.SCAN, ("scan",), ("scan",)),
    (ThreatType.UPDATE, ("definition",), ("update",)),
    (ThreatType.NETWORK, ("connection",), ("network",)),
    (ThreatType.REALTIME, ("real-time",), ("realtime",)),
    (ThreatType.QUARANTINE, ("quarantine",), ()),
)

# Status rules in priority order, matched against all messages of a group
_STATUS_RULES: tuple[tuple[ThreatStatus, tuple[str, ...]], ...] = (
    (ThreatStatus.BLOCKED, ("blocked",)),
    (ThreatStatus.QUARANTINED, ("quarantine",)),
    (ThreatStatus.RESOLVED, ("resolved", "cleaned")),
    (ThreatStatus.ALLOWED, ("allowed",)),
)

_SEVERITY_LABELS = {3: "Critical", 2: "High", 1: "Medium", 0: "Info"}


@dataclass(frozen=True)
class ThreatEvent:
    """A group of related entries presented as one security event.

    Attributes:
        group_key: ``"<component>_<window index>"``.
        timestamp: Timestamp of the first entry in the group.
        type: Heuristic classification.
        severity: Highest level in the group (informational levels as INFO).
        status: Heuristic outcome.
        component: Component shared by the group.
        description: Most important message of the group.
        count: Number of grouped entries.
        duration: Seconds between first and last entry; ``None`` for one entry.
        related_entries: The grouped entries, arrival order.
    """

    group_key: str
    timestamp: datetime
    type: ThreatType
    severity: LogLevel
    status: ThreatStatus
    component: str
    description: str
    count: int
    duration: float | None
    related_entries: tuple[LogEntry, ...]

    @property
    def severity_label(self) -> str:
        return _SEVERITY_LABELS[self.severity.severity_rank]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary (entries by id)."""
        return {
            "group_key": self.group_key,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "severity": self.severity.value,
            "severity_label": self.severity_label,
            "status": self.status.value,
            "component": self.component,
            "description": self.description,
            "count": self.count,
            "duration": self.duration,
            "related_entry_ids": [e.id for e in self.related_entries],
        }


@dataclass(frozen=True)
class CorrelationReport:
    """Ordered events plus the dashboard counters derived from them."""

    events: tuple[ThreatEvent, ...] = ()
    active_count: int = 0
    blocked_count: int = 0
    scan_count: int = 0


class CorrelationEngine:
    """Stateless (component, time-window) correlator.

    Usage::

        engine = CorrelationEngine()
        report = engine.correlate(store.snapshot())
        for event in report.events:
            ...
    """

    def __init__(self, *, window_seconds: int | None = None) -> None:
        settings = get_settings()
        self._window_seconds = window_seconds or settings.CORRELATION_WINDOW_SECONDS

    # ── Public API ──────────────────────────────────────────────────────

    def correlate(self, entries: Iterable[LogEntry]) -> CorrelationReport:
        """Group entries and build events, newest first."""
        groups: dict[str, list[LogEntry]] = {}
        for entry in entries:
            groups.setdefault(self.group_key(entry), []).append(entry)

        events = [self._build_event(key, grouped) for key, grouped in groups.items()]
        events.sort(key=lambda e: e.group_key)
        events.sort(key=lambda e: e.timestamp, reverse=True)

        return CorrelationReport(
            events=tuple(events),
            active_count=sum(1 for e in events if e.status is ThreatStatus.ACTIVE),
            blocked_count=sum(1 for e in events if e.status is ThreatStatus.BLOCKED),
            scan_count=sum(1 for e in events if e.type is ThreatType.SCAN),
        )

    def group_key(self, entry: LogEntry) -> str:
        bucket = int(entry.timestamp.timestamp() // self._window_seconds)
        return f"{entry.component}_{bucket}"

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    # ── Event construction ──────────────────────────────────────────────

    def _build_event(self, key: str, grouped: list[LogEntry]) -> ThreatEvent:
        first, last = grouped[0], grouped[-1]
        duration = None
        if len(grouped) > 1:
            duration = (last.timestamp - first.timestamp).total_seconds()

        return ThreatEvent(
            group_key=key,
            timestamp=first.timestamp,
            type=self._detect_type(first),
            severity=self._detect_severity(grouped),
            status=self._detect_status(grouped),
            component=first.component,
            description=self._summarize(grouped),
            count=len(grouped),
            duration=duration,
            related_entries=tuple(grouped),
        )

    @staticmethod
    def _detect_type(entry: LogEntry) -> ThreatType:
        message = entry.message.lower()
        component = entry.component.lower()
        for threat_type, message_keywords, component_keywords in _TYPE_RULES:
            if any(kw in message for kw in message_keywords) or any(
                kw in component for kw in component_keywords
            ):
                return threat_type
        return ThreatType.SCAN

    @staticmethod
    def _detect_severity(grouped: list[LogEntry]) -> LogLevel:
        top = max(grouped, key=lambda e: e.level.severity_rank).level
        return top if top.severity_rank > 0 else LogLevel.INFO

    @staticmethod
    def _detect_status(grouped: list[LogEntry]) -> ThreatStatus:
        messages = " ".join(e.message.lower() for e in grouped)
        for status, keywords in _STATUS_RULES:
            if any(kw in messages for kw in keywords):
                return status
        return ThreatStatus.ACTIVE

    @staticmethod
    def _summarize(grouped: list[LogEntry]) -> str:
        for level in (LogLevel.CRITICAL, LogLevel.ERROR):
            for entry in grouped:
                if entry.level is level:
                    return entry.message
        return grouped[0].message
