"""Shared pieces for technology pre-flight procedures."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from ravel.preflight.parsing import CoverageSummary, TestRunSummary
from ravel.preflight.tools import ToolResult, ToolRunner

logger = logging.getLogger(__name__)


@dataclass
class CheckLine:
    """One pass/fail line in a phase artifact."""

    passed: bool
    text: str

    def render(self) -> str:
        mark = "x" if self.passed else " "
        return f"- [{mark}] {self.text}"


@dataclass
class PhaseReport:
    """Accumulates checks for one pre-flight phase and renders its artifact."""

    rule_name: str
    title: str
    checks: list[CheckLine] = field(default_factory=list)
    details: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    def check(self, passed: bool, text: str) -> bool:
        self.checks.append(CheckLine(passed, text))
        logger.info(f"  {'OK  ' if passed else 'FAIL'} {text}")
        return passed

    def record(self, result: ToolResult, text: str) -> bool:
        """Record a tool invocation as a check."""
        return self.check(result.ok, text if result.ok else f"{text} (exit code {result.exit_code})")

    def note(self, text: str) -> None:
        self.details.append(text)

    def add_test_summary(self, label: str, summary: TestRunSummary | None) -> None:
        if summary is None:
            self.note(f"- {label}: test summary not found in output")
            return
        self.note(
            f"- {label}: {summary.total} tests, {summary.passed} passed, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        for name in summary.failing_tests:
            self.note(f"  - FAILED: {name}")

    def add_coverage(self, label: str, coverage: CoverageSummary | None) -> None:
        if coverage is None:
            self.note(f"- {label}: no lcov coverage data found")
            return
        self.note(
            f"- {label}: line coverage {coverage.percent:.1f}% "
            f"({coverage.covered_lines}/{coverage.total_lines} lines, {coverage.files} files, "
            f"{coverage.zero_coverage_files} files with 0% coverage)"
        )

    def render(self) -> str:
        status = "PASSED" if self.passed else "FAILED"
        lines = [
            f"# {self.title}",
            "",
            f"**Status:** {status}",
            f"**Rule:** {self.rule_name}",
            "**Source:** ravel pre-flight (deterministic, no AI)",
            "",
            "## Checks",
            "",
            *(check.render() for check in self.checks),
        ]
        if self.details:
            lines += ["", "## Details", "", *self.details]
        return "\n".join(lines) + "\n"


Phase = Callable[[Path], Awaitable[PhaseReport | None]]


class PreflightProcedure(ABC):
    """Deterministic setup for one technology, split into named phases.

    A phase returns a PhaseReport (rendered as the ``<prefix>_<phase>``
    artifact) or None when it cannot decide anything, leaving the step to the
    agent. A procedure whose tool check fails produces no artifacts at all.
    """

    prefix: str

    def __init__(self, tools: ToolRunner | None = None) -> None:
        self.tools = tools or ToolRunner()

    def rule_name(self, phase: str) -> str:
        return f"{self.prefix}_{phase}"

    def new_report(self, phase: str, title: str) -> PhaseReport:
        return PhaseReport(rule_name=self.rule_name(phase), title=f"Pre-flight: {title}")

    @abstractmethod
    async def check_tools(self, project_dir: Path) -> PhaseReport | None:
        """First phase. A failed report stops the procedure."""

    @abstractmethod
    def phases(self) -> list[Phase]:
        """Remaining phases, in execution order."""

    async def run(self, project_dir: Path) -> dict[str, str]:
        """Run every phase and return rendered artifacts keyed by rule name."""
        artifacts: dict[str, str] = {}

        tools_report = await self.check_tools(project_dir)
        if tools_report is None or not tools_report.passed:
            logger.warning(f"{self.prefix} tooling unavailable; AI steps will handle pre-flight work")
            return artifacts
        artifacts[tools_report.rule_name] = tools_report.render()

        for phase in self.phases():
            try:
                report = await phase(project_dir)
            except (OSError, ValueError) as e:
                logger.warning(f"{self.prefix} pre-flight phase {phase.__name__} failed: {e}; leaving it to the agent")
                continue
            if report is None:
                continue
            artifacts[report.rule_name] = report.render()

        return artifacts
