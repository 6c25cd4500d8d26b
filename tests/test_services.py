"""
Tests for the outbound collaborators.

Covers:
  - LogAnalyticsClient signing, request headers, disabled/misconfigured paths,
    transport failures
  - Summary field map
  - ComplianceRunner success, failure, missing script and timeout
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import stat

import pytest
import requests

KEY = base64.b64encode(b"super-secret-workspace-key").decode("ascii")
WORKSPACE = "0000-aaaa-1111"


class _FakeResponse:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


def _client(**kwargs):
    from services.log_analytics_client import LogAnalyticsClient

    kwargs.setdefault("enabled", True)
    kwargs.setdefault("workspace_id", WORKSPACE)
    kwargs.setdefault("shared_key", KEY)
    return LogAnalyticsClient(**kwargs)


# ═════════════════════════════════════════════════════════════════════════
# LogAnalyticsClient
# ═════════════════════════════════════════════════════════════════════════


class TestSignature:
    def test_matches_shared_key_construction(self):
        from services.log_analytics_client import build_signature

        date = "Wed, 15 Jan 2025 10:00:00 GMT"
        expected_digest = hmac.new(
            base64.b64decode(KEY),
            f"POST\n42\napplication/json\nx-ms-date:{date}\n/api/logs".encode("utf-8"),
            hashlib.sha256,
        ).digest()
        expected = f"SharedKey {WORKSPACE}:{base64.b64encode(expected_digest).decode()}"

        assert build_signature(WORKSPACE, KEY, date, 42) == expected

    def test_invalid_key_raises_configuration_error(self):
        from core.exceptions import ConfigurationError
        from services.log_analytics_client import build_signature

        with pytest.raises(ConfigurationError):
            build_signature(WORKSPACE, "not base64!!", "date", 1)

    def test_request_headers(self):
        client = _client(log_type="BeaconTest")
        body, headers = client.build_request({"TotalEntries": 3}, date="Wed, 15 Jan 2025 10:00:00 GMT")

        assert body == b'{"TotalEntries": 3}'
        assert headers["Content-Type"] == "application/json"
        assert headers["Log-Type"] == "BeaconTest"
        assert headers["x-ms-date"] == "Wed, 15 Jan 2025 10:00:00 GMT"
        assert headers["Authorization"].startswith(f"SharedKey {WORKSPACE}:")

    def test_endpoint(self):
        assert _client().endpoint == (
            f"https://{WORKSPACE}.ods.opinsights.azure.com/api/logs?api-version=2016-04-01"
        )


class TestSend:
    def _forbid_network(self, monkeypatch):
        def _post(*args, **kwargs):
            raise AssertionError("network must not be used")

        monkeypatch.setattr(requests, "post", _post)

    def test_disabled_sends_nothing(self, monkeypatch):
        self._forbid_network(monkeypatch)
        result = _client(enabled=False).send({"a": 1})
        assert result.sent is False
        assert result.status == "Forwarding disabled"

    def test_disabled_by_default(self, monkeypatch):
        from services.log_analytics_client import LogAnalyticsClient

        self._forbid_network(monkeypatch)
        client = LogAnalyticsClient()
        assert client.enabled is False
        assert client.send({"a": 1}).sent is False

    @pytest.mark.parametrize("workspace,key", [("", KEY), (WORKSPACE, "")])
    def test_missing_configuration_sends_nothing(self, monkeypatch, workspace, key):
        self._forbid_network(monkeypatch)
        result = _client(workspace_id=workspace, shared_key=key).send({"a": 1})
        assert result.sent is False
        assert result.status == "Forwarding not configured"

    def test_bad_key_sends_nothing(self, monkeypatch):
        self._forbid_network(monkeypatch)
        result = _client(shared_key="%%%").send({"a": 1})
        assert result.sent is False
        assert "base64" in result.status

    def test_success(self, monkeypatch):
        calls = []

        def _post(url, data=None, headers=None, timeout=None):
            calls.append((url, data, headers, timeout))
            return _FakeResponse(200)

        monkeypatch.setattr(requests, "post", _post)
        client = _client(timeout=2.5)
        result = client.send({"DeviceName": "mac-01"})

        assert result.sent is True
        assert result.status_code == 200
        [(url, data, headers, timeout)] = calls
        assert url == client.endpoint
        assert data == b'{"DeviceName": "mac-01"}'
        assert headers["Log-Type"] == "BeaconSentinelLogs"
        assert timeout == 2.5
        assert client.get_stats()["total_sent"] == 1

    def test_non_2xx_reported_not_retried(self, monkeypatch):
        calls = []

        def _post(*args, **kwargs):
            calls.append(1)
            return _FakeResponse(403, "Forbidden")

        monkeypatch.setattr(requests, "post", _post)
        client = _client()
        result = client.send({"a": 1})

        assert result.sent is False
        assert result.status_code == 403
        assert len(calls) == 1
        assert client.get_stats()["total_failed"] == 1

    def test_network_error_reported(self, monkeypatch):
        def _post(*args, **kwargs):
            raise requests.exceptions.ConnectionError("unreachable")

        monkeypatch.setattr(requests, "post", _post)
        result = _client().send({"a": 1})
        assert result.sent is False
        assert result.status_code is None
        assert "unreachable" in result.status


class TestSummaryFields:
    @pytest.mark.asyncio
    async def test_fields_from_view(self, log_file, append):
        from daemon.monitor_loop import MonitorLoop
        from services.log_analytics_client import summary_fields

        append(
            log_file,
            "2025-01-15 10:00:00 ERROR rtp: malware detected and blocked",
            "2025-01-15 10:00:10 INFO scanner: Scan started",
        )
        monitor = MonitorLoop(auto_refresh=False)
        await monitor.start(log_file)

        fields = summary_fields(monitor.view, device_name="mac-01", os_version="14.5")
        assert fields["DeviceName"] == "mac-01"
        assert fields["OSVersion"] == "14.5"
        assert fields["MonitoredFile"] == str(log_file)
        assert fields["TotalEntries"] == 2
        assert fields["ErrorCount"] == 1
        assert fields["ThreatEvents"] == 2
        assert fields["BlockedThreats"] == 1
        assert fields["ScanEvents"] == 1
        assert fields["TopPattern1"] == "malware"
        assert fields["TopPattern1Count"] == 1
        await monitor.stop()

    def test_empty_view(self):
        from daemon.monitor_loop import MonitorLoop
        from services.log_analytics_client import summary_fields

        fields = summary_fields(MonitorLoop(auto_refresh=False).view)
        assert fields["TotalEntries"] == 0
        assert fields["MonitoredFile"] == ""
        assert "TopPattern1" not in fields
        assert fields["DeviceName"]


# ═════════════════════════════════════════════════════════════════════════
# ComplianceRunner
# ═════════════════════════════════════════════════════════════════════════


def _script(directory, name: str, body: str):
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


class TestComplianceRunner:
    @pytest.mark.asyncio
    async def test_missing_script(self, tmp_path):
        from services.compliance_runner import BenchmarkType, ComplianceRunner

        report = await ComplianceRunner(scripts_dir=tmp_path).run(BenchmarkType.NIST)
        assert report.ok is False
        assert report.exit_code is None
        assert "Script not found" in report.content
        assert "nist_audit_script.sh" in report.content

    @pytest.mark.asyncio
    async def test_non_zero_exit_reports_output(self, tmp_path):
        from services.compliance_runner import BenchmarkType, ComplianceRunner

        _script(tmp_path, "cis_compliance_script.sh", 'echo "checking rules"\necho "boom" >&2\nexit 3')
        report = await ComplianceRunner(scripts_dir=tmp_path).run(BenchmarkType.CIS)

        assert report.ok is False
        assert report.exit_code == 3
        assert "Exit code: 3" in report.content
        assert "checking rules" in report.content
        assert "boom" in report.content

    @pytest.mark.asyncio
    async def test_cis_runs_scan_in_script_directory(self, tmp_path):
        from services.compliance_runner import BenchmarkType, ComplianceRunner

        _script(
            tmp_path,
            "cis_compliance_script.sh",
            'mkdir -p audit_reports\n'
            'echo "<html>mode=$1</html>" > audit_reports/cis_level1_comprehensive_report.html',
        )
        report = await ComplianceRunner(scripts_dir=tmp_path).run(BenchmarkType.CIS)

        assert report.ok is True
        assert report.exit_code == 0
        assert "<html>mode=scan</html>" in report.content
        assert report.report_path.endswith("audit_reports/cis_level1_comprehensive_report.html")

    @pytest.mark.asyncio
    async def test_gdpr_receives_report_path(self, tmp_path):
        from services.compliance_runner import BenchmarkType, ComplianceRunner

        scripts = tmp_path / "scripts"
        reports = tmp_path / "reports"
        scripts.mkdir()
        reports.mkdir()
        _script(scripts, "gdpr_audit_script.sh", 'echo "target=$1" > gdpr_comprehensive_report.html')

        runner = ComplianceRunner(scripts_dir=scripts, report_dir=reports)
        report = await runner.run(BenchmarkType.GDPR)

        assert report.ok is True
        assert f"target={reports}/gdpr_audit_script.sh_report.html" in report.content

    @pytest.mark.asyncio
    async def test_missing_report_after_success(self, tmp_path):
        from services.compliance_runner import BenchmarkType, ComplianceRunner

        _script(tmp_path, "nist_audit_script.sh", "exit 0")
        report = await ComplianceRunner(scripts_dir=tmp_path).run(BenchmarkType.NIST)

        assert report.ok is True
        assert report.content.startswith("Error reading HTML report")

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        from services.compliance_runner import BenchmarkType, ComplianceRunner

        _script(tmp_path, "cis_compliance_script.sh", "sleep 5")
        report = await ComplianceRunner(scripts_dir=tmp_path, timeout=0.2).run(BenchmarkType.CIS)

        assert report.ok is False
        assert "timed out" in report.content

    def test_benchmark_metadata(self):
        from services.compliance_runner import BenchmarkType

        assert BenchmarkType("gdpr").title == "GDPR Compliance Benchmark"
        assert BenchmarkType.NIST.report_name == "nist_800_171_comprehensive_report.html"
