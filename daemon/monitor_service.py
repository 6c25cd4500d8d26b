"""
Headless monitor - tails ``LOG_PATH`` and prints update batches.

Run standalone (``python -m daemon.monitor_service [path]``) or via
``RUN_MODE=monitor python main.py``.
"""

from __future__ import annotations

import asyncio
import logging
import sys

# Ensure project root is importable
sys.path.insert(0, ".")

from config.settings import get_settings
from core.trace_dashboard import TraceRenderer
from daemon.lifecycle import MonitorLifecycle
from daemon.monitor_loop import MonitorLoop, MonitorUpdate
from services.log_analytics_client import LogAnalyticsClient, summary_fields

logger = logging.getLogger(__name__)


def _print_banner(path: str) -> None:
    settings = get_settings()
    print(
        f"\n{'═' * 60}\n"
        f"  🛡️  {settings.APP_NAME.upper()} - LOG MONITOR\n"
        f"{'═' * 60}\n"
        f"  File         : {path}\n"
        f"  Poll         : {settings.POLL_INTERVAL_SECONDS:.1f}s\n"
        f"  Auto-refresh : {settings.AUTO_REFRESH}\n"
        f"  Window       : {settings.CORRELATION_WINDOW_SECONDS}s\n"
        f"  Forwarding   : {'on' if settings.AZURE_LOG_ANALYTICS_ENABLED else 'off'}\n"
        f"{'═' * 60}\n"
    )


def _forwarder(client: LogAnalyticsClient):
    """Forward a summary whenever a batch brings new errors."""

    async def on_update(update: MonitorUpdate) -> None:
        if not update.has_new_errors:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, client.send, summary_fields(update.view))

    return on_update


async def _run_monitor(path: str | None = None) -> int:
    """Run the monitor until interrupted. Returns a process exit code."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )

    path = path or settings.LOG_PATH
    if not path:
        logger.error("No log file given; set LOG_PATH or pass a path")
        return 2

    renderer = TraceRenderer()
    subscribers = [renderer.render_update]
    client = LogAnalyticsClient()
    if client.enabled:
        subscribers.append(_forwarder(client))

    monitor = MonitorLoop(subscribers=subscribers)
    lifecycle = MonitorLifecycle(monitor, path)

    if renderer.enabled:
        _print_banner(path)
    await lifecycle.start()
    if not lifecycle.is_running():
        return 1

    await lifecycle.wait_for_shutdown()
    return 0


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(_run_monitor(target)))
