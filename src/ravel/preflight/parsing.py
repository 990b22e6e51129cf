"""Parsers for test-runner output and lcov coverage data."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# 00:05 +40 ~1 -2: Some tests failed.
COMPACT_PROGRESS = re.compile(r"^\s*\d+:\d+\s+\+(\d+)(?:\s+~(\d+))?(?:\s+-(\d+))?:\s*(.*)$")
COMPACT_ERROR_MARKER = "[E]"

# Tests:       1 failed, 2 skipped, 10 passed, 13 total
JEST_TESTS_LINE = re.compile(r"^\s*Tests:\s+(.*\d+\s+total.*)$", re.MULTILINE)
JEST_COUNT = re.compile(r"(\d+)\s+(failed|skipped|todo|passed|total)")
JEST_FAILURE = re.compile(r"^\s*●\s+(.+?)\s*$", re.MULTILINE)

MAX_FAILING_TESTS = 50


@dataclass
class TestRunSummary:
    """Counts recovered from a test run."""

    __test__ = False  # not a pytest class

    total: int
    passed: int
    failed: int
    skipped: int = 0
    failing_tests: list[str] = field(default_factory=list)


@dataclass
class CoverageSummary:
    """Line coverage totals from an lcov file."""

    total_lines: int
    covered_lines: int
    files: int
    zero_coverage_files: int

    @property
    def percent(self) -> float:
        if self.total_lines == 0:
            return 0.0
        return self.covered_lines * 100.0 / self.total_lines


def parse_compact_test_output(output: str) -> TestRunSummary | None:
    """Parse ``flutter test --reporter compact`` output.

    The last progress line carries the final counts; lines ending in ``[E]``
    name failing tests.
    """
    last: re.Match[str] | None = None
    failing: list[str] = []

    for line in re.split(r"[\r\n]+", output):
        match = COMPACT_PROGRESS.match(line)
        if match is None:
            continue
        last = match
        description = match.group(4).rstrip()
        if description.endswith(COMPACT_ERROR_MARKER):
            name = description[: -len(COMPACT_ERROR_MARKER)].rstrip()
            if name not in failing:
                failing.append(name)

    if last is None:
        return None

    passed = int(last.group(1))
    skipped = int(last.group(2) or 0)
    failed = int(last.group(3) or 0)
    return TestRunSummary(
        total=passed + skipped + failed,
        passed=passed,
        failed=failed,
        skipped=skipped,
        failing_tests=failing[:MAX_FAILING_TESTS],
    )


def parse_jest_output(output: str) -> TestRunSummary | None:
    """Parse the ``Tests:`` summary and ``●`` failure headers of a Jest run."""
    summary = JEST_TESTS_LINE.search(output)
    if summary is None:
        return None

    counts = {kind: int(value) for value, kind in JEST_COUNT.findall(summary.group(1))}
    failing: list[str] = []
    for match in JEST_FAILURE.finditer(output):
        name = match.group(1)
        if name.startswith("Console") or name in failing:
            continue
        failing.append(name)

    return TestRunSummary(
        total=counts.get("total", 0),
        passed=counts.get("passed", 0),
        failed=counts.get("failed", 0),
        skipped=counts.get("skipped", 0) + counts.get("todo", 0),
        failing_tests=failing[:MAX_FAILING_TESTS],
    )


def parse_lcov(content: str) -> CoverageSummary | None:
    """Summarise an lcov tracefile.

    Uses the LF/LH totals of each record, falling back to counting DA lines
    when a record omits them.
    """
    total = covered = files = zero = 0
    in_record = False
    found: int | None = None
    hit: int | None = None
    da_found = da_hit = 0

    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith("SF:"):
            in_record = True
            found = hit = None
            da_found = da_hit = 0
        elif not in_record:
            continue
        elif line.startswith("DA:"):
            parts = line[3:].split(",")
            if len(parts) >= 2 and parts[1].strip().isdigit():
                da_found += 1
                if int(parts[1]) > 0:
                    da_hit += 1
        elif line.startswith("LF:") and line[3:].strip().isdigit():
            found = int(line[3:])
        elif line.startswith("LH:") and line[3:].strip().isdigit():
            hit = int(line[3:])
        elif line == "end_of_record":
            record_found = found if found is not None else da_found
            record_hit = hit if hit is not None else da_hit
            files += 1
            total += record_found
            covered += record_hit
            if record_found > 0 and record_hit == 0:
                zero += 1
            in_record = False

    if files == 0:
        return None
    return CoverageSummary(total_lines=total, covered_lines=covered, files=files, zero_coverage_files=zero)
