"""
FastAPI routes for Beacon Sentinel.

Endpoints:
  GET  /health                - Health check
  GET  /monitor/status        - Monitored file, flags and status text
  POST /monitor/start         - Start (or switch) monitoring a file
  POST /monitor/stop          - Stop monitoring
  POST /monitor/auto-refresh  - Toggle the periodic poll
  POST /monitor/reload        - Re-ingest the current file from the start
  POST /monitor/poll          - Read newly appended lines now
  GET  /entries               - Entry snapshot, file order
  GET  /counts                - Per-level counts with percentages
  GET  /threats               - Correlated security events
  GET  /threads               - Entries grouped by Defender thread id
  GET  /patterns              - Keyword and component summaries
  GET  /files                 - Discovered log files
  POST /forward               - Push the summary to Log Analytics
  POST /compliance/{name}     - Run a compliance benchmark script
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from api.schemas import (
    AutoRefreshRequest,
    BenchmarkResponse,
    CountsResponse,
    EntriesResponse,
    ErrorResponse,
    ForwardResponse,
    HealthResponse,
    MonitoredFileSchema,
    MonitorStatusResponse,
    PatternsResponse,
    StartMonitorRequest,
    ThreatsResponse,
    ThreadsResponse,
)
from config.settings import get_settings
from core.exceptions import LogFileError
from daemon.monitor_loop import MonitorLoop, MonitorView
from events.log_models import LogLevel
from ingest.log_discovery import discover_log_files
from realtime.pattern_detector import component_level_summary
from realtime.thread_grouper import ThreadStatus
from services.compliance_runner import BenchmarkType, ComplianceRunner
from services.log_analytics_client import LogAnalyticsClient, summary_fields

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Dependencies (wired on app.state by main.py) ────────────────────────


def get_monitor(request: Request) -> MonitorLoop:
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor not initialized",
        )
    return monitor


def get_forwarder(request: Request) -> LogAnalyticsClient:
    client = getattr(request.app.state, "forwarder", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Forwarding not initialized",
        )
    return client


def get_compliance_runner(request: Request) -> ComplianceRunner:
    runner = getattr(request.app.state, "compliance", None)
    if runner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Compliance runner not initialized",
        )
    return runner


def _log_file_http_error(exc: LogFileError) -> HTTPException:
    code = (
        status.HTTP_404_NOT_FOUND
        if exc.details.get("reason") == "not_found"
        else status.HTTP_400_BAD_REQUEST
    )
    return HTTPException(status_code=code, detail=exc.message)


def _status_response(view: MonitorView) -> MonitorStatusResponse:
    return MonitorStatusResponse(
        is_monitoring=view.is_monitoring,
        auto_refresh=view.auto_refresh,
        status=view.status,
        file=MonitoredFileSchema(**view.file.to_dict()) if view.file else None,
        updated_at=view.updated_at.isoformat(),
        total_entries=view.counts.total,
    )


# ── System ──────────────────────────────────────────────────────────────


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check",
)
async def health_check() -> HealthResponse:
    """Return the service health status."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        service=settings.APP_NAME,
        run_mode=settings.RUN_MODE,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# ── Monitor control ─────────────────────────────────────────────────────


@router.get(
    "/monitor/status",
    response_model=MonitorStatusResponse,
    tags=["Monitor"],
    summary="Current monitor state",
)
async def monitor_status(monitor: MonitorLoop = Depends(get_monitor)) -> MonitorStatusResponse:
    return _status_response(monitor.view)


@router.post(
    "/monitor/start",
    response_model=MonitorStatusResponse,
    tags=["Monitor"],
    summary="Start or switch monitoring to a file",
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def start_monitor(
    request: StartMonitorRequest,
    monitor: MonitorLoop = Depends(get_monitor),
) -> MonitorStatusResponse:
    """Tear down the current target and start tailing ``path``.

    A missing file or directory is a 404; an unreadable or unsupported
    file is a 400.  Either way monitoring stays off.
    """
    await monitor.switch_file(request.path)
    if not monitor.is_monitoring:
        exc = monitor.last_error
        if exc is not None:
            raise _log_file_http_error(exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=monitor.status)
    return _status_response(monitor.view)


@router.post(
    "/monitor/stop",
    response_model=MonitorStatusResponse,
    tags=["Monitor"],
    summary="Stop monitoring",
)
async def stop_monitor(monitor: MonitorLoop = Depends(get_monitor)) -> MonitorStatusResponse:
    await monitor.stop()
    return _status_response(monitor.view)


@router.post(
    "/monitor/auto-refresh",
    response_model=MonitorStatusResponse,
    tags=["Monitor"],
    summary="Enable or disable the periodic poll",
)
async def set_auto_refresh(
    request: AutoRefreshRequest,
    monitor: MonitorLoop = Depends(get_monitor),
) -> MonitorStatusResponse:
    await monitor.set_auto_refresh(request.enabled)
    return _status_response(monitor.view)


@router.post(
    "/monitor/reload",
    response_model=MonitorStatusResponse,
    tags=["Monitor"],
    summary="Re-ingest the monitored file from the start",
)
async def reload_monitor(monitor: MonitorLoop = Depends(get_monitor)) -> MonitorStatusResponse:
    view = await monitor.reload()
    return _status_response(view)


@router.post(
    "/monitor/poll",
    response_model=MonitorStatusResponse,
    tags=["Monitor"],
    summary="Read newly appended lines now",
)
async def poll_monitor(monitor: MonitorLoop = Depends(get_monitor)) -> MonitorStatusResponse:
    view = await monitor.poll_now()
    return _status_response(view)


# ── Query surface ───────────────────────────────────────────────────────


@router.get(
    "/entries",
    response_model=EntriesResponse,
    tags=["Entries"],
    summary="Entries of the monitored file",
)
async def list_entries(
    level: Optional[LogLevel] = Query(None, description="Only entries with this level"),
    limit: Optional[int] = Query(None, ge=1, le=100_000, description="Most recent N entries"),
    monitor: MonitorLoop = Depends(get_monitor),
) -> EntriesResponse:
    snapshot = monitor.view.entries
    selected = [e for e in snapshot if level is None or e.level is level]
    if limit is not None:
        selected = selected[-limit:]
    return EntriesResponse(
        total=len(snapshot),
        returned=len(selected),
        entries=[e.to_dict() for e in selected],
    )


@router.get(
    "/counts",
    response_model=CountsResponse,
    tags=["Entries"],
    summary="Per-level counts",
)
async def get_counts(monitor: MonitorLoop = Depends(get_monitor)) -> CountsResponse:
    counts = monitor.view.counts
    return CountsResponse(
        **counts.to_dict(),
        critical_percent=counts.percentage(LogLevel.CRITICAL),
        error_percent=counts.percentage(LogLevel.ERROR),
        warning_percent=counts.percentage(LogLevel.WARNING),
    )


@router.get(
    "/threats",
    response_model=ThreatsResponse,
    tags=["Threats"],
    summary="Correlated security events, newest first",
)
async def list_threats(monitor: MonitorLoop = Depends(get_monitor)) -> ThreatsResponse:
    report = monitor.view.threats
    return ThreatsResponse(
        total=len(report.events),
        active_count=report.active_count,
        blocked_count=report.blocked_count,
        scan_count=report.scan_count,
        events=[e.to_dict() for e in report.events],
    )


@router.get(
    "/threads",
    response_model=ThreadsResponse,
    tags=["Threats"],
    summary="Entries grouped by Defender thread, newest first",
)
async def list_threads(monitor: MonitorLoop = Depends(get_monitor)) -> ThreadsResponse:
    threads = monitor.view.threads
    return ThreadsResponse(
        total=len(threads),
        failed_count=sum(1 for t in threads if t.status is ThreadStatus.FAILED),
        in_progress_count=sum(1 for t in threads if t.status is ThreadStatus.IN_PROGRESS),
        events=[t.to_dict() for t in threads],
    )


@router.get(
    "/patterns",
    response_model=PatternsResponse,
    tags=["Threats"],
    summary="Threat keyword counts",
)
async def list_patterns(monitor: MonitorLoop = Depends(get_monitor)) -> PatternsResponse:
    view = monitor.view
    return PatternsResponse(
        patterns=[{"pattern": p.pattern, "count": p.count} for p in view.patterns],
        components=[
            {"pattern": p.pattern, "count": p.count}
            for p in component_level_summary(view.entries)
        ],
    )


@router.get(
    "/files",
    response_model=list[MonitoredFileSchema],
    tags=["Files"],
    summary="Discover log files",
    responses={404: {"model": ErrorResponse}},
)
async def list_files(
    directory: Optional[str] = Query(None, description="Defaults to LOG_DIRECTORY"),
) -> list[MonitoredFileSchema]:
    loop = asyncio.get_running_loop()
    try:
        files = await loop.run_in_executor(None, discover_log_files, directory)
    except LogFileError as exc:
        raise _log_file_http_error(exc)
    return [MonitoredFileSchema(**f.to_dict()) for f in files]


# ── Outbound collaborators ──────────────────────────────────────────────


@router.post(
    "/forward",
    response_model=ForwardResponse,
    tags=["Forwarding"],
    summary="Send the current summary to Log Analytics",
)
async def forward_summary(
    monitor: MonitorLoop = Depends(get_monitor),
    client: LogAnalyticsClient = Depends(get_forwarder),
) -> ForwardResponse:
    fields = summary_fields(monitor.view)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, client.send, fields)
    return ForwardResponse(**result.to_dict())


@router.post(
    "/compliance/{benchmark}",
    response_model=BenchmarkResponse,
    tags=["Compliance"],
    summary="Run a compliance benchmark script",
)
async def run_compliance(
    benchmark: BenchmarkType,
    runner: ComplianceRunner = Depends(get_compliance_runner),
) -> BenchmarkResponse:
    """Run the benchmark; script failures come back as ``ok=false`` reports."""
    report = await runner.run(benchmark)
    return BenchmarkResponse(**report.to_dict())
