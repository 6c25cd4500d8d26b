"""
Shared test fixtures and configuration for pytest.
"""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure project root is importable
_project_root = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, _project_root)

# Quiet, self-contained defaults for all tests
os.environ["ENABLE_TRACE_DASHBOARD"] = "false"
os.environ["AZURE_LOG_ANALYTICS_ENABLED"] = "false"
os.environ["RUN_MODE"] = "api"
os.environ["LOG_PATH"] = ""

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear settings cache so test env vars take effect."""
    from config.settings import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def parser():
    """Provide a LineParser with a fixed ingestion clock."""
    from ingest.line_parser import LineParser
    return LineParser(clock=lambda: FIXED_NOW)


@pytest.fixture
def log_file(tmp_path):
    """Provide a writable ``.log`` file path (created empty)."""
    path = tmp_path / "wdavdaemon.log"
    path.write_text("", encoding="utf-8")
    return path


@pytest.fixture
def make_entry():
    """Factory for LogEntry objects with sensible defaults."""
    import uuid
    from events.log_models import LogEntry, LogLevel

    def _make(
        message: str = "event",
        *,
        level: LogLevel = LogLevel.INFO,
        component: str = "rtp",
        timestamp: datetime = FIXED_NOW,
        thread_id: str = "",
    ) -> LogEntry:
        return LogEntry(
            id=uuid.uuid4().hex,
            timestamp=timestamp,
            level=level,
            component=component,
            message=message,
            raw_text=message,
            thread_id=thread_id,
        )

    return _make


@pytest.fixture
def append():
    """Append raw lines to a file; ``newline=False`` leaves the last one open."""

    def _append(path, *lines: str, newline: bool = True) -> None:
        text = "\n".join(lines) + ("\n" if newline else "")
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(text)

    return _append
