"""
MonitorLoop - live-tail monitoring of one log file.

Owns the polling cadence and the start/stop/switch lifecycle for a
single monitored file, feeds new lines through the parser into the
``EntryStore``, recomputes correlation, thread events and pattern
counts after every batch, and delivers the result to subscribers
registered up front.

Concurrency model:
  - One asyncio poll task per monitored file; file I/O runs in the
    default executor, never on the event loop
  - One asyncio lock serializes writers (periodic poll, manual poll,
    reload) so a file's state has a single writer
  - A generation counter discards reads that were in flight when the
    target was switched or monitoring stopped
  - Consumers only see immutable ``MonitorView`` objects, swapped in
    whole after each batch
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Union

from config.settings import get_settings
from core.exceptions import LogFileError
from events.log_models import LevelCounts, LogEntry, LogLevel, MonitoredFile
from ingest.line_parser import LineParser
from ingest.log_discovery import describe_file, has_allowed_extension
from ingest.tail_cursor import PollResult, TailCursor
from realtime.correlation_engine import CorrelationEngine, CorrelationReport
from realtime.entry_store import EntrySnapshot, EntryStore
from realtime.pattern_detector import PatternMatch, detect
from realtime.thread_grouper import ThreadEvent, group_by_thread

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorView:
    """Everything a consumer may read, captured at one instant."""

    file: MonitoredFile | None
    entries: EntrySnapshot
    threats: CorrelationReport
    threads: tuple[ThreadEvent, ...]
    patterns: tuple[PatternMatch, ...]
    is_monitoring: bool
    auto_refresh: bool
    status: str
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def counts(self) -> LevelCounts:
        return self.entries.counts


@dataclass(frozen=True)
class MonitorUpdate:
    """One delivered batch."""

    view: MonitorView
    new_entries: tuple[LogEntry, ...]
    reset: bool = False

    @property
    def has_new_errors(self) -> bool:
        return any(
            e.level in (LogLevel.ERROR, LogLevel.CRITICAL) for e in self.new_entries
        )


Subscriber = Callable[[MonitorUpdate], Union[Awaitable[None], None]]


class MonitorLoop:
    """Tails one log file at a time and publishes derived views.

    Usage::

        monitor = MonitorLoop(subscribers=[on_update])
        status = await monitor.start("/var/log/mdatp/wdavdaemon.log")
        view = monitor.view
        await monitor.set_auto_refresh(False)
        await monitor.poll_now()
        await monitor.stop()
    """

    def __init__(
        self,
        *,
        subscribers: Iterable[Subscriber] = (),
        parser: LineParser | None = None,
        correlation_engine: CorrelationEngine | None = None,
        patterns: list[str] | None = None,
        poll_interval: float | None = None,
        auto_refresh: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._subscribers: list[Subscriber] = list(subscribers)
        self._parser = parser or LineParser()
        self._engine = correlation_engine or CorrelationEngine()
        self._patterns = list(patterns if patterns is not None else settings.THREAT_PATTERNS)
        self._poll_interval = poll_interval or settings.POLL_INTERVAL_SECONDS
        self._auto_refresh = settings.AUTO_REFRESH if auto_refresh is None else auto_refresh

        self._store = EntryStore()
        self._cursor: TailCursor | None = None
        self._file: MonitoredFile | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._generation = 0
        self._monitoring = False
        self._status = "Not monitoring"
        self._last_error: LogFileError | None = None
        self._view = self._build_view()

        # Stats
        self._total_polls = 0
        self._total_errors = 0
        self._total_resets = 0
        self._lines_read = 0

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self, path: str | os.PathLike[str]) -> str:
        """Start monitoring ``path``, replacing any previous target.

        Returns a status string; a missing or unreadable file leaves
        monitoring off instead of raising.
        """
        await self.stop()

        try:
            described = describe_file(path)
            if not has_allowed_extension(described.path):
                raise LogFileError(described.path, f"Unsupported log file type: {described.name}")
        except LogFileError as exc:
            return self._fail(exc)

        self._generation += 1
        generation = self._generation
        self._last_error = None
        self._file = described
        self._cursor = TailCursor(described.path)
        self._store.clear()
        self._monitoring = True
        self._status = f"Monitoring {described.name}"

        try:
            await self._poll(generation)
        except LogFileError as exc:
            await self.stop()
            return self._fail(exc)

        # A subscriber stopped or switched the target during delivery
        if generation != self._generation:
            return self._status

        if self._auto_refresh:
            self._start_task(generation)

        logger.info(
            "MonitorLoop: monitoring %s (%d entries, auto_refresh=%s, poll=%.1fs)",
            described.path, self._store.counts.total, self._auto_refresh, self._poll_interval,
        )
        return self._status

    async def switch_file(self, path: str | os.PathLike[str]) -> str:
        """Tear down the current target completely, then start ``path``."""
        return await self.start(path)

    async def stop(self) -> None:
        """Stop polling and discard the monitored file's state."""
        was_monitoring = self._monitoring
        self._generation += 1
        self._monitoring = False
        await self._cancel_task()

        self._cursor = None
        self._file = None
        self._store.clear()
        if was_monitoring:
            self._status = "Monitoring stopped"
            logger.info("MonitorLoop: stopped (lines_read=%d)", self._lines_read)
        self._view = self._build_view()

    async def set_auto_refresh(self, enabled: bool) -> None:
        """Toggle the periodic poll; manual polls stay available either way."""
        self._auto_refresh = enabled
        if enabled and self._monitoring and self._task is None:
            self._start_task(self._generation)
        elif not enabled:
            await self._cancel_task()
        self._view = dataclasses.replace(self._view, auto_refresh=enabled)
        logger.info("MonitorLoop: auto-refresh %s", "enabled" if enabled else "disabled")

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    # ── On-demand refresh ───────────────────────────────────────────────

    async def poll_now(self) -> MonitorView:
        """Read whatever was appended since the last poll."""
        if self._monitoring:
            try:
                await self._poll(self._generation)
            except LogFileError as exc:
                self._record_error(exc)
        return self._view

    async def reload(self) -> MonitorView:
        """Clear everything and re-ingest the current file from offset 0."""
        if not self._monitoring or self._cursor is None:
            return self._view
        async with self._lock:
            self._cursor.rewind()
            self._store.clear()
        try:
            await self._poll(self._generation, force_publish=True)
        except LogFileError as exc:
            self._record_error(exc)
        return self._view

    # ── Consumer query surface ──────────────────────────────────────────

    @property
    def view(self) -> MonitorView:
        return self._view

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def auto_refresh(self) -> bool:
        return self._auto_refresh

    @property
    def status(self) -> str:
        return self._status

    @property
    def last_error(self) -> LogFileError | None:
        """Why the last start or poll failed, if it did."""
        return self._last_error

    def get_stats(self) -> dict[str, Any]:
        """Return monitor statistics."""
        return {
            "monitoring": self._monitoring,
            "auto_refresh": self._auto_refresh,
            "poll_interval": self._poll_interval,
            "file": self._file.path if self._file else None,
            "total_polls": self._total_polls,
            "total_errors": self._total_errors,
            "total_resets": self._total_resets,
            "lines_read": self._lines_read,
            "entries": self._store.counts.total,
        }

    # ── Polling ─────────────────────────────────────────────────────────

    def _start_task(self, generation: int) -> None:
        self._task = asyncio.create_task(
            self._poll_loop(generation), name="monitor-poll"
        )

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            # Stopped from a subscriber running inside the poll task itself
            if task is asyncio.current_task():
                return
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _poll_loop(self, generation: int) -> None:
        """Periodic poll with error isolation."""
        while self._auto_refresh and generation == self._generation:
            try:
                await asyncio.sleep(self._poll_interval)
                await self._poll(generation)
            except asyncio.CancelledError:
                break
            except LogFileError as exc:
                self._record_error(exc)
            except Exception:
                self._total_errors += 1
                logger.exception("MonitorLoop: poll error")

    async def _poll(self, generation: int, *, force_publish: bool = False) -> None:
        """Read, parse, append and publish one batch for ``generation``.

        Subscribers run after the writer lock is released, so a subscriber
        may itself call ``poll_now()`` or ``reload()``.
        """
        update = await self._ingest(generation, force_publish=force_publish)
        if update is not None:
            await self._deliver(update)

    async def _ingest(
        self, generation: int, *, force_publish: bool = False
    ) -> MonitorUpdate | None:
        async with self._lock:
            cursor = self._cursor
            if cursor is None or generation != self._generation:
                return None

            loop = asyncio.get_running_loop()
            result: PollResult = await loop.run_in_executor(None, cursor.poll)
            if generation != self._generation:
                return None

            reset = result.reset
            if reset:
                self._total_resets += 1
                self._store.clear()
                result = await loop.run_in_executor(None, cursor.poll)
                if generation != self._generation:
                    return None

            self._total_polls += 1
            self._lines_read += len(result.lines)
            added = self._store.append(self._parser.parse_batch(result.lines))
            if reset:
                self._store.recount()

            if self._file is not None and cursor.last_modified is not None:
                self._file = dataclasses.replace(
                    self._file,
                    size_bytes=cursor.last_size,
                    modified_at=datetime.fromtimestamp(cursor.last_modified, tz=timezone.utc),
                ).with_counts(self._store.counts)

            if self._monitoring:
                self._status = f"Monitoring {self._file.name}" if self._file else self._status

            if added or reset or result.initial or force_publish:
                self._view = self._build_view()
                return MonitorUpdate(self._view, tuple(added), reset)
            return None

    # ── Views and delivery ──────────────────────────────────────────────

    def _build_view(self) -> MonitorView:
        snapshot = self._store.snapshot()
        return MonitorView(
            file=self._file,
            entries=snapshot,
            threats=self._engine.correlate(snapshot),
            threads=group_by_thread(snapshot),
            patterns=tuple(detect(snapshot, self._patterns)),
            is_monitoring=self._monitoring,
            auto_refresh=self._auto_refresh,
            status=self._status,
        )

    async def _deliver(self, update: MonitorUpdate) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(update)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("MonitorLoop: subscriber %r failed", subscriber)

    def _fail(self, exc: LogFileError) -> str:
        self._last_error = exc
        self._status = exc.message
        self._view = self._build_view()
        logger.warning("MonitorLoop: cannot monitor %s: %s", exc.path, exc.message)
        return self._status

    def _record_error(self, exc: LogFileError) -> None:
        self._last_error = exc
        self._total_errors += 1
        self._status = exc.message
        self._view = dataclasses.replace(self._view, status=exc.message)
        logger.warning("MonitorLoop: poll failed for %s: %s", exc.path, exc.message)
