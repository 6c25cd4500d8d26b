"""
LineParser - turns raw log lines into structured ``LogEntry`` records.

Recognized shapes (first match wins)::

    [890][2025-01-15 10:30:45.123456 UTC][info]: [{rtp}]: Scan started
    [10:00:01][ERROR][RTP] Threat blocked
    2025-01-15T10:30:45Z [WARNING] updater: definitions are stale
    Jan 15 10:30:45 ERROR network: connection reset
    2025-01-15 10:30:45.123456-0800  0x1a2b  Fault  0x0  123  0  wdavdaemon: (com.microsoft.wdav) Scan failed
    {"timestamp": "...", "level": "warn", "component": "...", "message": "..."}

A line without a parseable leading timestamp does not start a new
record: it is folded into the previous entry of the batch (stack traces,
wrapped JSON).  Parsing never raises; the worst case is a single
``UNKNOWN`` entry carrying the raw text verbatim.

Defender lines keep their leading ``[pid]`` as ``thread_id``; unified log
lines get ``process:subsystem`` as their component.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Union

from dateutil import parser as date_parser

from config.settings import get_settings
from events.log_models import LogEntry, LogLevel
from ingest.severity import SeverityClassifier

logger = logging.getLogger(__name__)

# ── Pattern definitions ─────────────────────────────────────────────────

_BRACKET_TS_RE = re.compile(r"^\s*(?:\[(?P<pid>\d+)\])?\[(?P<ts>[^\]]+)\]")
_BARE_TS_RE = re.compile(
    r"^\s*(?P<ts>"
    r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:\s?(?:Z|UTC|[+-]\d{2}:?\d{2}))?"
    r"|[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}"
    r"|\d{2}:\d{2}:\d{2}(?:\.\d+)?"
    r")(?=\s|$|\])"
)
_TIME_OF_DAY_RE = re.compile(r"\d{1,2}:\d{2}")
_LEVEL_RE = re.compile(
    r"^\s*:?\s*(?:\[(?P<bracket>[A-Za-z]+)\]|(?P<bare>[A-Za-z]+)\b)"
)
_COMPONENT_RE = re.compile(
    r"^\s*:?\s*(?:"
    r"\[\{?(?P<bracket>[^\]\}]*)\}?\]"
    r"|\{(?P<brace>[^}]*)\}"
    r"|(?P<bare>[\w.\-/]+):(?=\s|$)"
    r")"
)
_LEADING_DELIMS_RE = re.compile(r"^\s*:?\s*")
# macOS unified log tail: thread, type, activity, pid, ttl, "process: (subsystem) message"
_UNIFIED_RE = re.compile(
    r"^\s+0x[0-9a-fA-F]+\s+(?P<level>[A-Za-z]+)\s+0x[0-9a-fA-F]+\s+\d+\s+\d+\s+"
    r"(?P<process>[^:(]+?):\s*\((?P<subsystem>[^)]+)\)\s*(?P<message>.*)$"
)
_FUTURE_TOLERANCE = timedelta(days=1)

_JSON_TIMESTAMP_KEYS = ("timestamp", "@timestamp", "time", "ts", "date")
_JSON_LEVEL_KEYS = ("level", "severity", "lvl", "log_level")
_JSON_COMPONENT_KEYS = ("component", "logger", "source", "module")
_JSON_MESSAGE_KEYS = ("message", "msg", "text", "description")


@dataclass(frozen=True)
class NewEntry:
    """The line starts a new record."""

    entry: LogEntry


@dataclass(frozen=True)
class Continuation:
    """The line continues the previous record."""

    text: str


ParseResult = Union[NewEntry, Continuation]


@dataclass
class ParseState:
    """Continuation state carried from line to line within one batch."""

    previous: LogEntry | None = None


class LineParser:
    """Stateless line parser; continuation state is passed in explicitly.

    Usage::

        parser = LineParser()
        entries = parser.parse_batch(lines)
    """

    def __init__(
        self,
        *,
        timestamp_formats: Iterable[str] | None = None,
        merge_continuations: bool | None = None,
        classifier: SeverityClassifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._formats = list(timestamp_formats or settings.TIMESTAMP_FORMATS)
        self._merge = (
            settings.MERGE_CONTINUATION_LINES
            if merge_continuations is None
            else merge_continuations
        )
        self._classifier = classifier or SeverityClassifier()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── Public API ──────────────────────────────────────────────────────

    def parse_line(self, line: str, state: ParseState | None = None) -> ParseResult:
        """Parse one raw line.

        Returns ``Continuation`` only when the line has no leading timestamp
        and ``state`` holds a previous entry to merge into.
        """
        text = line.rstrip("\r\n")
        now = self._clock()

        try:
            entry = self._parse_record(text, now)
        except Exception:
            logger.debug("LineParser: unparseable line kept verbatim: %r", text[:200])
            entry = None

        if entry is not None:
            return NewEntry(entry)

        if self._merge and state is not None and state.previous is not None:
            return Continuation(text)

        return NewEntry(self._orphan(text, now))

    def parse_batch(self, lines: Iterable[str]) -> list[LogEntry]:
        """Parse a batch of lines, merging continuations into their record."""
        state = ParseState()
        entries: list[LogEntry] = []

        for line in lines:
            if not line.strip():
                continue
            result = self.parse_line(line, state)
            if isinstance(result, Continuation):
                merged = _merge_continuation(entries[-1], result.text)
                entries[-1] = merged
                state.previous = merged
            else:
                entries.append(result.entry)
                state.previous = result.entry

        return entries

    # ── Record parsing ──────────────────────────────────────────────────

    def _parse_record(self, text: str, now: datetime) -> LogEntry | None:
        """Return an entry if ``text`` starts with a parseable timestamp."""
        if text.lstrip().startswith("{"):
            json_entry = self._parse_json_record(text, now)
            if json_entry is not None:
                return json_entry

        located = self._locate_timestamp(text, now)
        if located is None:
            return None
        timestamp, rest, thread_id = located

        unified = _UNIFIED_RE.match(rest)
        if unified:
            return self._unified_entry(unified, timestamp, text)

        level = LogLevel.UNKNOWN
        component = ""
        level_match = _LEVEL_RE.match(rest)
        if level_match:
            token = level_match.group("bracket") or level_match.group("bare")
            bare = level_match.group("bare") is not None
            if self._classifier.is_level_token(token) and (not bare or token.isupper()):
                level = self._classifier.classify(token)
                rest = rest[level_match.end():]
                component, rest = _split_component(rest)

        return LogEntry(
            id=uuid.uuid4().hex,
            timestamp=timestamp,
            level=level,
            component=component,
            message=_LEADING_DELIMS_RE.sub("", rest, count=1).strip(),
            raw_text=text,
            thread_id=thread_id,
        )

    def _unified_entry(self, match: re.Match[str], timestamp: datetime, text: str) -> LogEntry:
        # Unified log types: Default, Info, Debug, Error, Fault, Activity...
        level = self._classifier.classify(match.group("level"))
        if level is LogLevel.UNKNOWN:
            level = LogLevel.INFO
        return LogEntry(
            id=uuid.uuid4().hex,
            timestamp=timestamp,
            level=level,
            component=f"{match.group('process').strip()}:{match.group('subsystem').strip()}",
            message=match.group("message").strip(),
            raw_text=text,
        )

    def _parse_json_record(self, text: str, now: datetime) -> LogEntry | None:
        """One JSON object per line (``.json`` logs) is always a record of its own."""
        try:
            payload = json.loads(text)
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None

        timestamp = None
        raw_ts = _first_value(payload, _JSON_TIMESTAMP_KEYS)
        if raw_ts is not None:
            timestamp = self._parse_timestamp(str(raw_ts), now)

        return LogEntry(
            id=uuid.uuid4().hex,
            timestamp=timestamp or now,
            level=self._classifier.classify(
                str(_first_value(payload, _JSON_LEVEL_KEYS) or "")
            ),
            component=str(_first_value(payload, _JSON_COMPONENT_KEYS) or ""),
            message=str(_first_value(payload, _JSON_MESSAGE_KEYS) or text.strip()),
            raw_text=text,
        )

    def _locate_timestamp(
        self, text: str, now: datetime
    ) -> tuple[datetime, str, str] | None:
        """Return the timestamp, the rest of the line and the ``[pid]`` thread id."""
        match = _BRACKET_TS_RE.match(text)
        if match:
            parsed = self._parse_timestamp(match.group("ts"), now)
            if parsed is not None:
                return parsed, text[match.end():], match.group("pid") or ""

        match = _BARE_TS_RE.match(text)
        if match:
            parsed = self._parse_timestamp(match.group("ts").replace(",", "."), now)
            if parsed is not None:
                return parsed, text[match.end():], ""

        return None

    def _parse_timestamp(self, candidate: str, now: datetime) -> datetime | None:
        """Try the configured formats in order, then a lenient variant parse."""
        value = candidate.strip()
        for fmt in self._formats:
            try:
                parsed = datetime.strptime(value, fmt)
            except ValueError:
                continue
            return _to_utc(_complete_date(parsed, fmt, now))

        # Text without a time of day is never a timestamp
        if not _TIME_OF_DAY_RE.search(value):
            return None
        try:
            parsed = date_parser.parse(value, default=now.replace(tzinfo=None))
        except (ValueError, OverflowError):
            return None
        return _to_utc(parsed)

    def _orphan(self, text: str, now: datetime) -> LogEntry:
        return LogEntry(
            id=uuid.uuid4().hex,
            timestamp=now,
            level=LogLevel.UNKNOWN,
            component="",
            message=text,
            raw_text=text,
        )


# ── Helpers ─────────────────────────────────────────────────────────────


def _split_component(rest: str) -> tuple[str, str]:
    """Split the component token following the level marker from the message."""
    match = _COMPONENT_RE.match(rest)
    if not match:
        return "", rest
    component = match.group("bracket") or match.group("brace") or match.group("bare") or ""
    return component.strip().strip("{}").strip(), rest[match.end():]


def _first_value(payload: dict, keys: tuple[str, ...]) -> object | None:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _complete_date(parsed: datetime, fmt: str, now: datetime) -> datetime:
    """Fill in the date parts a format does not carry from ingestion time."""
    if "%Y" in fmt:
        return parsed
    if "%d" in fmt:
        dated = parsed.replace(year=now.year)
        # Written last year: a December line read in early January
        if dated.replace(tzinfo=None) - now.replace(tzinfo=None) > _FUTURE_TOLERANCE:
            dated = dated.replace(year=now.year - 1)
        return dated
    return parsed.replace(year=now.year, month=now.month, day=now.day)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _merge_continuation(entry: LogEntry, text: str) -> LogEntry:
    return dataclasses.replace(
        entry,
        message=f"{entry.message}\n{text}",
        raw_text=f"{entry.raw_text}\n{text}",
    )
