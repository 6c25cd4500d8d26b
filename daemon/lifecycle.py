"""
MonitorLifecycle - startup/shutdown management for the headless monitor.

Starts the ``MonitorLoop`` on the configured file, installs signal
handlers, and stops the loop within a bounded timeout on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from daemon.monitor_loop import MonitorLoop

logger = logging.getLogger(__name__)


class MonitorLifecycle:
    """Manages monitor startup and shutdown sequences.

    Usage::

        lifecycle = MonitorLifecycle(monitor, path)
        await lifecycle.start()
        await lifecycle.wait_for_shutdown()
    """

    def __init__(
        self,
        monitor: MonitorLoop,
        path: str,
        *,
        shutdown_timeout: float = 10.0,
    ) -> None:
        self._monitor = monitor
        self._path = path
        self._shutdown_timeout = shutdown_timeout
        self._shutdown_event = asyncio.Event()
        self._started = False

    # ── Public API ──────────────────────────────────────────────────────

    async def start(self) -> str:
        """Install signal handlers and start monitoring; returns the status."""
        logger.info("MonitorLifecycle: starting monitor on %s", self._path)
        self._install_signal_handlers()
        status = await self._monitor.start(self._path)
        self._started = self._monitor.is_monitoring
        if self._started:
            logger.info("MonitorLifecycle: %s", status)
        else:
            logger.error("MonitorLifecycle: monitor did not start: %s", status)
        return status

    async def wait_for_shutdown(self) -> None:
        """Block until a shutdown signal is received."""
        await self._shutdown_event.wait()
        await self.stop()

    async def stop(self) -> None:
        """Gracefully stop the monitor with timeout."""
        if not self._started:
            return

        logger.info("MonitorLifecycle: shutting down (timeout=%.1fs)...", self._shutdown_timeout)
        try:
            await asyncio.wait_for(self._monitor.stop(), timeout=self._shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning("MonitorLifecycle: shutdown timed out, forcing exit")

        self._started = False
        logger.info("MonitorLifecycle: shutdown complete")

    def request_shutdown(self) -> None:
        """Request a graceful shutdown (can be called from signal handler)."""
        logger.info("MonitorLifecycle: shutdown requested")
        self._shutdown_event.set()

    def is_running(self) -> bool:
        return self._started

    def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self._started else "stopped",
            "started": self._started,
            "monitor": self._monitor.status,
        }

    # ── Signal handling ────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.request_shutdown)
            logger.debug("MonitorLifecycle: signal handlers installed")
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            logger.debug("MonitorLifecycle: signal handlers not supported here")
