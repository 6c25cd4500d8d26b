"""
TraceRenderer - console-based live monitor dashboard.

Renders a formatted summary after each delivered update batch, giving
operators running the headless monitor live visual feedback.  Pure
presentation logic.

Toggled via ``ENABLE_TRACE_DASHBOARD`` in settings.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from config.settings import get_settings
from events.log_models import LogLevel
from realtime.thread_grouper import ThreadStatus

if TYPE_CHECKING:
    from daemon.monitor_loop import MonitorUpdate

logger = logging.getLogger(__name__)

# ── Visual constants ────────────────────────────────────────────────────

_HEADER = "═" * 50
_THIN = "─" * 50
_LEVEL_ICONS = {
    LogLevel.CRITICAL: "🟣",
    LogLevel.ERROR: "🔴",
    LogLevel.WARNING: "🟠",
}
_MAX_EVENTS = 5


class TraceRenderer:
    """Console renderer for monitor updates.

    Pass ``renderer.render_update`` as a ``MonitorLoop`` subscriber.

    Usage::

        renderer = TraceRenderer()
        monitor = MonitorLoop(subscribers=[renderer.render_update])
    """

    def __init__(self, *, enabled: bool | None = None) -> None:
        self._settings = get_settings()
        self._enabled = self._settings.ENABLE_TRACE_DASHBOARD if enabled is None else enabled

    @property
    def enabled(self) -> bool:
        """Whether the trace dashboard is active."""
        return self._enabled

    # ── Public rendering API ────────────────────────────────────────────

    def render_update(self, update: MonitorUpdate) -> None:
        """Print one update batch."""
        if not self._enabled:
            return
        print(self.format_update(update))

    def format_update(self, update: MonitorUpdate) -> str:
        view = update.view
        counts = view.counts
        name = view.file.name if view.file else "-"

        lines = [
            f"\n{_HEADER}",
            f"  🛡️  {name}  ({view.status})",
            _THIN,
        ]
        if update.reset:
            lines.append("  ↺ File truncated or rotated, re-ingested from start")
        lines.append(
            f"  Entries: {counts.total}  (+{len(update.new_entries)})"
            f"   Critical: {counts.critical} ({counts.percentage(LogLevel.CRITICAL)}%)"
            f"   Errors: {counts.error} ({counts.percentage(LogLevel.ERROR)}%)"
            f"   Warnings: {counts.warning}"
        )

        for entry in update.new_entries:
            icon = _LEVEL_ICONS.get(entry.level)
            if icon:
                first_line = entry.message.splitlines()[0] if entry.message else ""
                lines.append(f"      {icon} [{entry.component or '-'}] {first_line}")

        threats = view.threats
        lines.append(_THIN)
        lines.append(
            f"  Events: {len(threats.events)}   Active: {threats.active_count}"
            f"   Blocked: {threats.blocked_count}   Scans: {threats.scan_count}"
        )
        for event in threats.events[:_MAX_EVENTS]:
            lines.append(
                f"      → {event.timestamp:%H:%M:%S} {event.type.value} "
                f"[{event.severity_label}/{event.status.value}] ×{event.count}: "
                f"{event.description.splitlines()[0] if event.description else ''}"
            )

        if view.threads:
            failed = sum(1 for t in view.threads if t.status is ThreadStatus.FAILED)
            lines.append(f"  Threads: {len(view.threads)}   Failed: {failed}")

        if view.patterns:
            summary = ", ".join(f"{p.pattern}={p.count}" for p in view.patterns)
            lines.append(f"  Patterns: {summary}")

        lines.append(_HEADER)
        return "\n".join(lines)
