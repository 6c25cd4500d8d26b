"""
LogAnalyticsClient - forwards summaries to Azure Log Analytics.

Uses the HTTP Data Collector API with SharedKey (HMAC-SHA256) request
signing.  Forwarding is best effort: a disabled or misconfigured client
sends nothing, and failures are logged and reported, never retried.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import platform
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import formatdate
from typing import TYPE_CHECKING, Any

import requests

from config.settings import get_settings
from core.exceptions import ConfigurationError, ForwardingError

if TYPE_CHECKING:
    from daemon.monitor_loop import MonitorView

logger = logging.getLogger(__name__)

_API_VERSION = "2016-04-01"
_RESOURCE = "/api/logs"
_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class ForwardResult:
    """Outcome of one forwarding attempt."""

    sent: bool
    status: str
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"sent": self.sent, "status": self.status, "status_code": self.status_code}


def build_signature(
    workspace_id: str,
    shared_key: str,
    date: str,
    content_length: int,
    *,
    method: str = "POST",
    content_type: str = _CONTENT_TYPE,
    resource: str = _RESOURCE,
) -> str:
    """Return the ``Authorization`` header value for one request.

    Raises:
        ConfigurationError: If ``shared_key`` is not valid base64.
    """
    string_to_sign = f"{method}\n{content_length}\n{content_type}\nx-ms-date:{date}\n{resource}"
    try:
        decoded_key = base64.b64decode(shared_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(
            "AZURE_SHARED_KEY is not valid base64",
            details={"error": str(exc)},
        ) from exc

    digest = hmac.new(decoded_key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    signature = base64.b64encode(digest).decode("ascii")
    return f"SharedKey {workspace_id}:{signature}"


def summary_fields(
    view: MonitorView,
    *,
    device_name: str | None = None,
    os_version: str | None = None,
    top_patterns: int = 3,
) -> dict[str, Any]:
    """Flatten a monitor view into the field map sent to Log Analytics."""
    counts = view.counts
    threats = view.threats
    fields: dict[str, Any] = {
        "DeviceName": device_name or platform.node() or "Unknown",
        "OSVersion": os_version or platform.platform(),
        "Timestamp": view.updated_at.astimezone(timezone.utc).isoformat(),
        "EventType": "LogMonitorSummary",
        "MonitoredFile": view.file.path if view.file else "",
        "TotalEntries": counts.total,
        "CriticalCount": counts.critical,
        "ErrorCount": counts.error,
        "WarningCount": counts.warning,
        "InfoCount": counts.info,
        "ThreatEvents": len(threats.events),
        "ActiveThreats": threats.active_count,
        "BlockedThreats": threats.blocked_count,
        "ScanEvents": threats.scan_count,
    }
    for index, match in enumerate(view.patterns[:top_patterns], start=1):
        fields[f"TopPattern{index}"] = match.pattern
        fields[f"TopPattern{index}Count"] = match.count
    return fields


class LogAnalyticsClient:
    """Signs and posts field maps to a Log Analytics workspace.

    Usage::

        client = LogAnalyticsClient()
        result = client.send(summary_fields(monitor.view))
    """

    def __init__(
        self,
        *,
        enabled: bool | None = None,
        workspace_id: str | None = None,
        shared_key: str | None = None,
        log_type: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._enabled = settings.AZURE_LOG_ANALYTICS_ENABLED if enabled is None else enabled
        self._workspace_id = workspace_id if workspace_id is not None else settings.AZURE_WORKSPACE_ID
        self._shared_key = shared_key if shared_key is not None else settings.AZURE_SHARED_KEY
        self._log_type = log_type or settings.AZURE_LOG_TYPE
        self._timeout = timeout or settings.FORWARD_TIMEOUT_SECONDS

        self._total_sent = 0
        self._total_failed = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def configured(self) -> bool:
        return bool(self._workspace_id and self._shared_key)

    @property
    def endpoint(self) -> str:
        return (
            f"https://{self._workspace_id}.ods.opinsights.azure.com"
            f"{_RESOURCE}?api-version={_API_VERSION}"
        )

    def build_request(
        self, fields: dict[str, Any], *, date: str | None = None
    ) -> tuple[bytes, dict[str, str]]:
        """Return the JSON body and signed headers for ``fields``."""
        body = json.dumps(fields, default=str).encode("utf-8")
        date = date or formatdate(usegmt=True)
        headers = {
            "Content-Type": _CONTENT_TYPE,
            "Log-Type": self._log_type,
            "x-ms-date": date,
            "Authorization": build_signature(
                self._workspace_id, self._shared_key, date, len(body)
            ),
        }
        return body, headers

    def send(self, fields: dict[str, Any]) -> ForwardResult:
        """Post one record; never raises."""
        if not self._enabled:
            return ForwardResult(sent=False, status="Forwarding disabled")
        if not self.configured:
            logger.warning("LogAnalyticsClient: workspace id or shared key missing")
            return ForwardResult(sent=False, status="Forwarding not configured")

        try:
            body, headers = self.build_request(fields)
        except ConfigurationError as exc:
            logger.warning("LogAnalyticsClient: %s", exc.message)
            return ForwardResult(sent=False, status=exc.message)

        try:
            status_code = self._post(body, headers)
        except ForwardingError as exc:
            self._total_failed += 1
            logger.error("LogAnalyticsClient: %s", exc.message)
            return ForwardResult(
                sent=False, status=exc.message, status_code=exc.details.get("status_code")
            )

        self._total_sent += 1
        logger.info("LogAnalyticsClient: sent %d fields (HTTP %d)", len(fields), status_code)
        return ForwardResult(sent=True, status="Sent", status_code=status_code)

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "configured": self.configured,
            "log_type": self._log_type,
            "total_sent": self._total_sent,
            "total_failed": self._total_failed,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

    # ── Transport ───────────────────────────────────────────────────────

    def _post(self, body: bytes, headers: dict[str, str]) -> int:
        try:
            response = requests.post(
                self.endpoint, data=body, headers=headers, timeout=self._timeout
            )
        except requests.exceptions.RequestException as exc:
            raise ForwardingError(f"Request failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ForwardingError(
                f"Log Analytics rejected the record (HTTP {response.status_code})",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )
        return response.status_code
