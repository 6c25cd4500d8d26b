"""
ComplianceRunner - runs CIS / GDPR / NIST benchmark shell scripts.

Each benchmark is an external script; on success its HTML report is read
back from the script directory, on failure the captured output is
returned with the exit code.  The runner never touches monitor state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from config.settings import get_settings
from core.exceptions import ComplianceScriptError

logger = logging.getLogger(__name__)


class BenchmarkType(str, Enum):
    CIS = "cis"
    GDPR = "gdpr"
    NIST = "nist"

    @property
    def title(self) -> str:
        return f"{self.name} Compliance Benchmark"

    @property
    def script_name(self) -> str:
        return _SCRIPTS[self]

    @property
    def report_name(self) -> str:
        """Report location relative to the script directory."""
        return _REPORTS[self]


_SCRIPTS = {
    BenchmarkType.CIS: "cis_compliance_script.sh",
    BenchmarkType.GDPR: "gdpr_audit_script.sh",
    BenchmarkType.NIST: "nist_audit_script.sh",
}

_REPORTS = {
    BenchmarkType.CIS: "audit_reports/cis_level1_comprehensive_report.html",
    BenchmarkType.GDPR: "gdpr_comprehensive_report.html",
    BenchmarkType.NIST: "nist_800_171_comprehensive_report.html",
}


@dataclass(frozen=True)
class BenchmarkReport:
    """Result of one benchmark run.

    ``content`` holds the HTML report when ``ok`` is true, otherwise a
    human-readable error including the captured script output.
    """

    benchmark: BenchmarkType
    ok: bool
    content: str
    exit_code: int | None = None
    report_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "benchmark": self.benchmark.value,
            "title": self.benchmark.title,
            "ok": self.ok,
            "exit_code": self.exit_code,
            "report_path": self.report_path,
            "content": self.content,
        }


class ComplianceRunner:
    """Launches benchmark scripts with ``/bin/sh`` and collects reports.

    Usage::

        runner = ComplianceRunner()
        report = await runner.run(BenchmarkType.CIS)
    """

    def __init__(
        self,
        *,
        scripts_dir: str | Path | None = None,
        report_dir: str | Path | None = None,
        timeout: float | None = None,
        shell: str = "/bin/sh",
    ) -> None:
        settings = get_settings()
        self._scripts_dir = Path(scripts_dir or settings.COMPLIANCE_SCRIPTS_DIR).expanduser().resolve()
        self._report_dir = Path(report_dir or settings.COMPLIANCE_REPORT_DIR).expanduser()
        self._timeout = timeout or settings.COMPLIANCE_TIMEOUT_SECONDS
        self._shell = shell

    @property
    def scripts_dir(self) -> Path:
        return self._scripts_dir

    def script_path(self, benchmark: BenchmarkType) -> Path:
        return self._scripts_dir / benchmark.script_name

    async def run(self, benchmark: BenchmarkType) -> BenchmarkReport:
        """Run one benchmark and return its report; never raises for script failures."""
        script = self.script_path(benchmark)
        if not script.is_file():
            logger.error("ComplianceRunner: script not found: %s", script)
            return BenchmarkReport(
                benchmark=benchmark,
                ok=False,
                content=(
                    f"Error: Script not found for {benchmark.title}. "
                    f"Looking for: {benchmark.script_name}"
                ),
            )

        args = self._arguments(benchmark, script)
        logger.info("ComplianceRunner: executing %s %s", self._shell, " ".join(args))

        try:
            exit_code, output = await self._execute(args)
        except ComplianceScriptError as exc:
            logger.error("ComplianceRunner: %s", exc.message)
            return BenchmarkReport(
                benchmark=benchmark,
                ok=False,
                content=exc.message,
                exit_code=exc.details.get("exit_code"),
            )

        if exit_code != 0:
            logger.warning(
                "ComplianceRunner: %s exited with %d", benchmark.script_name, exit_code
            )
            return BenchmarkReport(
                benchmark=benchmark,
                ok=False,
                exit_code=exit_code,
                content=(
                    f"Error running script for {benchmark.title}. "
                    f"Exit code: {exit_code}\nOutput:\n{output}"
                ),
            )

        report_path = self._scripts_dir / benchmark.report_name
        content = await self._read_report(report_path)
        logger.info("ComplianceRunner: %s completed, report %s", benchmark.title, report_path)
        return BenchmarkReport(
            benchmark=benchmark,
            ok=True,
            exit_code=exit_code,
            content=content,
            report_path=str(report_path),
        )

    # ── Internals ───────────────────────────────────────────────────────

    def _arguments(self, benchmark: BenchmarkType, script: Path) -> list[str]:
        if benchmark is BenchmarkType.CIS:
            return [str(script), "scan"]
        target = self._report_dir / f"{benchmark.script_name}_report.html"
        return [str(script), str(target)]

    async def _execute(self, args: list[str]) -> tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self._shell,
                *args,
                cwd=str(self._scripts_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise ComplianceScriptError(f"Failed to launch {args[0]}: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ComplianceScriptError(
                f"Script {args[0]} timed out after {self._timeout:.0f}s",
                details={"exit_code": process.returncode},
            )

        return process.returncode, stdout.decode("utf-8", errors="replace")

    @staticmethod
    async def _read_report(path: Path) -> str:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None, lambda: path.read_text(encoding="utf-8", errors="replace")
            )
        except OSError as exc:
            logger.error("ComplianceRunner: cannot read report %s: %s", path, exc)
            return f"Error reading HTML report: {exc}"
