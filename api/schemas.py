"""
Pydantic schemas for all API request / response payloads.

Provides strict type validation and auto-generated OpenAPI documentation.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ── Request schemas ─────────────────────────────────────────────────────


class StartMonitorRequest(BaseModel):
    """File to start (or switch) monitoring."""

    path: str = Field(..., min_length=1, max_length=4096, description="Absolute path of the log file")


class AutoRefreshRequest(BaseModel):
    """Toggle for the periodic poll."""

    enabled: bool


# ── Response schemas ────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    service: str = "Beacon Sentinel"
    version: str = "1.0.0"
    run_mode: str
    timestamp: str


class ErrorResponse(BaseModel):
    """Structured error response."""

    error: str
    detail: str
    status_code: int


class MonitoredFileSchema(BaseModel):
    """A log file with cached counts."""

    path: str
    name: str
    size_bytes: int
    modified_at: str
    entry_count: int = 0
    critical_count: int = 0
    error_count: int = 0
    warning_count: int = 0


class MonitorStatusResponse(BaseModel):
    """Monitor state at one instant."""

    is_monitoring: bool
    auto_refresh: bool
    status: str
    file: Optional[MonitoredFileSchema] = None
    updated_at: str
    total_entries: int


class LogEntrySchema(BaseModel):
    """One parsed entry."""

    id: str
    timestamp: str
    level: str
    component: str
    message: str
    raw_text: str
    thread_id: str = ""


class EntriesResponse(BaseModel):
    """Entry snapshot, file order."""

    total: int
    returned: int
    entries: list[LogEntrySchema]


class CountsResponse(BaseModel):
    """Per-level counts with integer percentages."""

    total: int
    critical: int
    error: int
    warning: int
    info: int
    debug: int
    trace: int
    critical_percent: int
    error_percent: int
    warning_percent: int


class ThreatEventSchema(BaseModel):
    """A correlated security event."""

    group_key: str
    timestamp: str
    type: str
    severity: str
    severity_label: str
    status: str
    component: str
    description: str
    count: int
    duration: Optional[float] = None
    related_entry_ids: list[str] = Field(default_factory=list)


class ThreatsResponse(BaseModel):
    """Correlated events, newest first, plus dashboard counters."""

    total: int
    active_count: int
    blocked_count: int
    scan_count: int
    events: list[ThreatEventSchema]


class ThreadEventSchema(BaseModel):
    """Everything one Defender thread wrote, with its outcome."""

    thread_id: str
    type: str
    status: str
    start_time: str
    end_time: Optional[str] = None
    duration: Optional[float] = None
    error_count: int
    warning_count: int
    entry_ids: list[str] = Field(default_factory=list)


class ThreadsResponse(BaseModel):
    """Thread events, most recently started first."""

    total: int
    failed_count: int
    in_progress_count: int
    events: list[ThreadEventSchema]


class PatternSchema(BaseModel):
    pattern: str
    count: int


class PatternsResponse(BaseModel):
    """Keyword counts and the busiest component/level pairs."""

    patterns: list[PatternSchema]
    components: list[PatternSchema]


class ForwardResponse(BaseModel):
    """Outcome of a Log Analytics forward."""

    sent: bool
    status: str
    status_code: Optional[int] = None


class BenchmarkResponse(BaseModel):
    """Result of a compliance benchmark run."""

    benchmark: str
    title: str
    ok: bool
    exit_code: Optional[int] = None
    report_path: Optional[str] = None
    content: str
