"""
Tests for the live-tail monitor.

Covers:
  - MonitorLoop start/stop/switch lifecycle and status strings
  - Manual polling, auto-refresh, reload
  - Truncation reset correctness
  - Subscriber delivery (sync, async, failing)
  - TraceRenderer output
  - MonitorLifecycle shutdown
"""

from __future__ import annotations

import asyncio

import pytest

LINES = [
    "2025-01-15 10:00:00 INFO rtp: Real-time protection started",
    "2025-01-15 10:00:05 ERROR rtp: Threat detected: EICAR",
    "2025-01-15 10:00:06 WARNING rtp: malware quarantine pending",
]


def _monitor(**kwargs):
    from daemon.monitor_loop import MonitorLoop

    kwargs.setdefault("auto_refresh", False)
    return MonitorLoop(**kwargs)


class TestMonitorStart:
    @pytest.mark.asyncio
    async def test_missing_file_returns_status(self, tmp_path):
        monitor = _monitor()
        status = await monitor.start(tmp_path / "missing.log")

        assert "not found" in status
        assert monitor.is_monitoring is False
        assert monitor.view.status == status
        assert monitor.last_error is not None
        assert monitor.last_error.details["reason"] == "not_found"

    @pytest.mark.asyncio
    async def test_missing_directory_returns_status(self, tmp_path):
        monitor = _monitor()
        status = await monitor.start(tmp_path / "nowhere" / "x.log")
        assert "directory" in status
        assert monitor.is_monitoring is False

    @pytest.mark.asyncio
    async def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "archive.gz"
        path.write_bytes(b"\x1f\x8b")
        monitor = _monitor()
        status = await monitor.start(path)
        assert "Unsupported" in status
        assert monitor.is_monitoring is False

    @pytest.mark.asyncio
    async def test_initial_ingest(self, log_file, append):
        append(log_file, *LINES)
        updates = []
        monitor = _monitor(subscribers=[updates.append])

        status = await monitor.start(log_file)
        view = monitor.view

        assert status == f"Monitoring {log_file.name}"
        assert view.is_monitoring is True
        assert view.counts.total == 3
        assert view.counts.error == 1
        assert view.file.entry_count == 3
        assert view.file.error_count == 1
        assert [p.pattern for p in view.patterns] == ["malware", "threat"]
        assert len(updates) == 1
        assert len(updates[0].new_entries) == 3
        assert updates[0].has_new_errors is True
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_last_line_without_newline_is_ingested(self, log_file):
        from ingest.log_discovery import discover_log_files

        log_file.write_text(f"{LINES[0]}\n{LINES[1]}", encoding="utf-8")
        monitor = _monitor()
        await monitor.start(log_file)

        assert monitor.view.counts.total == 2
        assert monitor.view.counts.error == 1
        [scanned] = discover_log_files(log_file.parent)
        assert scanned.entry_count == monitor.view.counts.total
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_empty_file_publishes_empty_view(self, log_file):
        updates = []
        monitor = _monitor(subscribers=[updates.append])
        await monitor.start(log_file)

        assert monitor.is_monitoring is True
        assert monitor.view.counts.total == 0
        assert len(updates) == 1
        assert updates[0].new_entries == ()
        await monitor.stop()


class TestMonitorPolling:
    @pytest.mark.asyncio
    async def test_poll_now_reads_appended_lines(self, log_file, append):
        append(log_file, LINES[0])
        updates = []
        monitor = _monitor(subscribers=[updates.append])
        await monitor.start(log_file)

        append(log_file, LINES[1])
        view = await monitor.poll_now()

        assert view.counts.total == 2
        assert [e.message for e in view.entries] == [
            "Real-time protection started",
            "Threat detected: EICAR",
        ]
        assert len(updates) == 2
        assert len(updates[1].new_entries) == 1
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_poll_without_changes_publishes_nothing(self, log_file, append):
        append(log_file, LINES[0])
        updates = []
        monitor = _monitor(subscribers=[updates.append])
        await monitor.start(log_file)

        await monitor.poll_now()
        assert len(updates) == 1
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_counts_always_match_entries(self, log_file, append):
        monitor = _monitor()
        await monitor.start(log_file)
        for line in LINES * 3:
            append(log_file, line)
            view = await monitor.poll_now()
            assert view.counts.total == len(view.entries)
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_truncation_replaces_state(self, log_file, append):
        append(log_file, *LINES)
        updates = []
        monitor = _monitor(subscribers=[updates.append])
        await monitor.start(log_file)

        log_file.write_text(LINES[0] + "\n", encoding="utf-8")
        view = await monitor.poll_now()

        assert view.counts.total == 1
        assert view.counts.error == 0
        assert view.entries[0].message == "Real-time protection started"
        assert updates[-1].reset is True
        assert view.file.entry_count == 1
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_reload_reingests(self, log_file, append):
        append(log_file, *LINES)
        monitor = _monitor()
        await monitor.start(log_file)
        before = [e.id for e in monitor.view.entries]

        view = await monitor.reload()

        assert view.counts.total == 3
        assert [e.id for e in view.entries] != before
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_file_deleted_sets_error_status(self, log_file, append):
        append(log_file, LINES[0])
        monitor = _monitor()
        await monitor.start(log_file)

        log_file.unlink()
        view = await monitor.poll_now()

        assert "not found" in view.status
        assert monitor.get_stats()["total_errors"] == 1
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_auto_refresh_picks_up_new_lines(self, log_file, append):
        monitor = _monitor(auto_refresh=True, poll_interval=0.05)
        await monitor.start(log_file)

        append(log_file, *LINES)
        for _ in range(40):
            if monitor.view.counts.total == 3:
                break
            await asyncio.sleep(0.05)

        assert monitor.view.counts.total == 3
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_auto_refresh_off_leaves_view_until_manual_poll(self, log_file, append):
        monitor = _monitor(auto_refresh=True, poll_interval=0.05)
        await monitor.start(log_file)
        await monitor.set_auto_refresh(False)
        assert monitor.view.auto_refresh is False

        append(log_file, *LINES)
        await asyncio.sleep(0.2)
        assert monitor.view.counts.total == 0

        await monitor.poll_now()
        assert monitor.view.counts.total == 3
        await monitor.stop()


class TestMonitorLifecycle:
    @pytest.mark.asyncio
    async def test_stop_discards_state(self, log_file, append):
        append(log_file, *LINES)
        monitor = _monitor()
        await monitor.start(log_file)
        await monitor.stop()

        assert monitor.is_monitoring is False
        assert monitor.status == "Monitoring stopped"
        assert monitor.view.file is None
        assert monitor.view.counts.total == 0

    @pytest.mark.asyncio
    async def test_switch_file_replaces_everything(self, tmp_path, append):
        first = tmp_path / "first.log"
        second = tmp_path / "second.log"
        append(first, *LINES)
        append(second, "2025-01-15 11:00:00 INFO updater: definitions updated")

        monitor = _monitor()
        await monitor.start(first)
        status = await monitor.switch_file(second)

        assert status == "Monitoring second.log"
        assert monitor.view.file.name == "second.log"
        assert monitor.view.counts.total == 1
        assert [e.component for e in monitor.view.entries] == ["updater"]
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_switch_to_missing_file_stops_previous(self, tmp_path, log_file, append):
        append(log_file, *LINES)
        monitor = _monitor()
        await monitor.start(log_file)
        await monitor.switch_file(tmp_path / "missing.log")

        assert monitor.is_monitoring is False
        assert monitor.view.counts.total == 0


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_async_subscriber_awaited(self, log_file, append):
        append(log_file, *LINES)
        received = []

        async def on_update(update):
            await asyncio.sleep(0)
            received.append(len(update.new_entries))

        monitor = _monitor(subscribers=[on_update])
        await monitor.start(log_file)
        assert received == [3]
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_delivery(self, log_file, append):
        append(log_file, *LINES)
        received = []

        def broken(update):
            raise RuntimeError("boom")

        monitor = _monitor(subscribers=[broken, received.append])
        status = await monitor.start(log_file)

        assert monitor.is_monitoring is True
        assert status.startswith("Monitoring")
        assert len(received) == 1
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_subscribe_after_construction(self, log_file, append):
        received = []
        monitor = _monitor()
        monitor.subscribe(received.append)
        append(log_file, LINES[0])
        await monitor.start(log_file)
        assert len(received) == 1
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_subscriber_may_poll_and_reload(self, log_file, append):
        append(log_file, *LINES)
        calls = []

        async def on_update(update):
            calls.append(len(update.new_entries))
            if len(calls) == 1:
                await monitor.poll_now()
                await monitor.reload()

        monitor = _monitor(subscribers=[on_update])
        status = await asyncio.wait_for(monitor.start(log_file), timeout=3)

        assert status == f"Monitoring {log_file.name}"
        assert monitor.view.counts.total == 3
        # initial ingest, then the reload's forced publish
        assert calls == [3, 3]
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_subscriber_stopping_monitor_wins(self, log_file, append):
        append(log_file, *LINES)

        async def on_update(update):
            await monitor.stop()

        monitor = _monitor(subscribers=[on_update], auto_refresh=True, poll_interval=0.05)
        await asyncio.wait_for(monitor.start(log_file), timeout=3)

        assert monitor.is_monitoring is False
        assert monitor._task is None


class TestTraceRenderer:
    @pytest.mark.asyncio
    async def test_format_update(self, log_file, append):
        from core.trace_dashboard import TraceRenderer

        append(log_file, *LINES)
        updates = []
        monitor = _monitor(subscribers=[updates.append])
        await monitor.start(log_file)

        text = TraceRenderer(enabled=True).format_update(updates[0])
        assert log_file.name in text
        assert "Entries: 3" in text
        assert "Threat detected: EICAR" in text
        assert "malware=1" in text
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_format_update_lists_threads(self, log_file, append):
        from core.trace_dashboard import TraceRenderer

        append(
            log_file,
            "[890][2025-01-15 10:00:00.000000 UTC][error]: [{rtp}]: scan aborted",
            "[890][2025-01-15 10:00:01.000000 UTC][error]: [{rtp}]: scan aborted",
            "[890][2025-01-15 10:00:02.000000 UTC][error]: [{rtp}]: scan aborted",
        )
        updates = []
        monitor = _monitor(subscribers=[updates.append])
        await monitor.start(log_file)

        text = TraceRenderer(enabled=True).format_update(updates[0])
        assert "Threads: 1   Failed: 1" in text
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_disabled_renderer_prints_nothing(self, log_file, append, capsys):
        from core.trace_dashboard import TraceRenderer

        renderer = TraceRenderer()
        assert renderer.enabled is False

        append(log_file, *LINES)
        monitor = _monitor(subscribers=[renderer.render_update])
        await monitor.start(log_file)
        assert "Entries:" not in capsys.readouterr().out
        await monitor.stop()


class TestMonitorLifecycleWrapper:
    @pytest.mark.asyncio
    async def test_start_and_requested_shutdown(self, log_file, append):
        from daemon.lifecycle import MonitorLifecycle

        append(log_file, *LINES)
        monitor = _monitor()
        lifecycle = MonitorLifecycle(monitor, str(log_file))

        await lifecycle.start()
        assert lifecycle.is_running() is True
        assert lifecycle.health_check()["status"] == "healthy"

        lifecycle.request_shutdown()
        await lifecycle.wait_for_shutdown()
        assert lifecycle.is_running() is False
        assert monitor.is_monitoring is False

    @pytest.mark.asyncio
    async def test_missing_file_does_not_start(self, tmp_path):
        from daemon.lifecycle import MonitorLifecycle

        lifecycle = MonitorLifecycle(_monitor(), str(tmp_path / "missing.log"))
        status = await lifecycle.start()
        assert "not found" in status
        assert lifecycle.is_running() is False


class TestMonitorService:
    @pytest.mark.asyncio
    async def test_no_path_exits_with_usage_code(self):
        from daemon.monitor_service import _run_monitor

        assert await _run_monitor(None) == 2

    @pytest.mark.asyncio
    async def test_missing_file_exits_with_error(self, tmp_path):
        from daemon.monitor_service import _run_monitor

        assert await _run_monitor(str(tmp_path / "missing.log")) == 1

    @pytest.mark.asyncio
    async def test_forwarder_only_sends_on_new_errors(self, log_file, append):
        from daemon.monitor_service import _forwarder

        sent = []

        class _Client:
            def send(self, fields):
                sent.append(fields)

        updates = []
        monitor = _monitor(subscribers=[updates.append])
        append(log_file, LINES[0])
        await monitor.start(log_file)
        append(log_file, LINES[1])
        await monitor.poll_now()

        forward = _forwarder(_Client())
        await forward(updates[0])
        assert sent == []
        await forward(updates[1])
        assert len(sent) == 1
        assert sent[0]["ErrorCount"] == 1
        await monitor.stop()
