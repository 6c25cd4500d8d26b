"""
Beacon Sentinel - Application Entry Point.

Creates the FastAPI application, wires the monitor and outbound
collaborators onto ``app.state``, and mounts middleware.

Supports three run modes (controlled by ``RUN_MODE`` setting):
  - ``api``     - REST API only (default)
  - ``monitor`` - headless live-tail of ``LOG_PATH`` with console trace
  - ``hybrid``  - REST API, auto-starting ``LOG_PATH`` on startup
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from config.settings import get_settings
from daemon.monitor_loop import MonitorLoop
from services.compliance_runner import ComplianceRunner
from services.log_analytics_client import LogAnalyticsClient

# ── Logging setup ───────────────────────────────────────────────────────

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)

logger = logging.getLogger("beacon")


# ── Application factory ────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan: initialize and tear down resources."""
    settings = get_settings()
    logger.info("═══ Starting %s ═══", settings.APP_NAME)
    logger.info(
        "Environment: %s | Run Mode: %s | Log directory: %s",
        settings.ENVIRONMENT.value,
        settings.RUN_MODE,
        settings.LOG_DIRECTORY,
    )

    monitor = MonitorLoop()
    app.state.monitor = monitor
    app.state.forwarder = LogAnalyticsClient()
    app.state.compliance = ComplianceRunner()

    # ── Hybrid mode: start tailing alongside the API ────────────────
    if settings.RUN_MODE == "hybrid" and settings.LOG_PATH:
        status = await monitor.start(settings.LOG_PATH)
        logger.info("Hybrid mode: %s", status)

    logger.info("All dependencies wired. System ready.")
    yield

    # ── Cleanup ──────────────────────────────────────────────────────
    await monitor.stop()
    logger.info("═══ Shutting down %s ═══", settings.APP_NAME)


app = FastAPI(
    title="Beacon Sentinel",
    description=(
        "Live-tail log monitor for endpoint security logs: parses entries, "
        "counts severities, correlates related entries into security events, "
        "forwards summaries to Log Analytics and runs compliance benchmarks."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── Middleware ──────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routes ──────────────────────────────────────────────────────────────

app.include_router(router)


# ── CLI entry point ─────────────────────────────────────────────────────

if __name__ == "__main__":
    run_mode = settings.RUN_MODE.lower()

    if run_mode == "monitor":
        from daemon.monitor_service import _run_monitor

        target = sys.argv[1] if len(sys.argv) > 1 else None
        sys.exit(asyncio.run(_run_monitor(target)))

    else:
        # API or hybrid mode: let uvicorn handle it
        import uvicorn

        uvicorn.run(
            "main:app",
            host=settings.API_HOST,
            port=settings.API_PORT,
            reload=settings.DEBUG,
            log_level=settings.LOG_LEVEL.lower(),
        )
