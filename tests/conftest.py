"""Shared fixtures for ravel tests."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ravel.core.models import Agent, ExecutionStep, ProcessOutcome, RunConfig, TokenUsage
from ravel.preflight.tools import ToolResult
from ravel.runners.agents import ClaudeInvoker

OUTPUT_PATH = re.compile(r"Save (?:your complete findings|the final report) to: (\S+)")

Handler = Callable[[str, str | None], ProcessOutcome]

SAMPLE_PLAN = """<!-- 3f2a9c1e -->
# Flutter Project Health Audit

Some introduction text.

**Rule Execution Order**:
1. `@flutter_tool_installer`
2. `@flutter_version_alignment` (MANDATORY - stops if FVM global fails)
3. `@flutter_test_coverage`
4. `@flutter_code_quality`
5. `@flutter_report_generator`

## Notes

6. `@not_a_step`
"""


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for tests."""
    return tmp_path


def output_path_from(prompt: str) -> Path:
    match = OUTPUT_PATH.search(prompt)
    assert match is not None, f"no output path in prompt: {prompt!r}"
    return Path(match.group(1))


def write_output(prompt: str, content: str = "# findings\n") -> Path:
    path = output_path_from(prompt)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def claude_json(input_tokens: int = 0, output_tokens: int = 0, cache_read: int = 0, cost: float | None = None) -> str:
    payload: dict[str, Any] = {
        "type": "result",
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_read_input_tokens": cache_read,
            "cache_creation_input_tokens": 0,
        },
    }
    if cost is not None:
        payload["total_cost_usd"] = cost
    return json.dumps(payload)


class FakeInvoker(ClaudeInvoker):
    """Claude invoker that never spawns a process.

    By default each call writes the output file named in the prompt and exits
    0. Pass ``handler`` to script other behaviour per call.
    """

    def __init__(self, project_root: Path, handler: Handler | None = None) -> None:
        super().__init__(project_root)
        self.handler = handler
        self.calls: list[tuple[str, str | None]] = []

    async def invoke(self, prompt: str, model: str | None) -> ProcessOutcome:
        self.calls.append((prompt, model))
        if self.handler is not None:
            return self.handler(prompt, model)
        write_output(prompt)
        return ProcessOutcome(exit_code=0, stdout="{}")

    @property
    def outputs(self) -> list[Path]:
        return [output_path_from(prompt) for prompt, _ in self.calls]


class FakeToolRunner:
    """ToolRunner stand-in keyed by the joined command line.

    Unscripted commands succeed with empty output.
    """

    def __init__(self, results: dict[str, ToolResult] | None = None, default_exit: int = 0) -> None:
        self.results = results or {}
        self.default_exit = default_exit
        self.calls: list[tuple[list[str], Path]] = []

    async def run(self, args: list[str], cwd: Path) -> ToolResult:
        self.calls.append((args, cwd))
        key = " ".join(args)
        if key in self.results:
            return self.results[key]
        return ToolResult(args=args, exit_code=self.default_exit)

    @property
    def commands(self) -> list[str]:
        return [" ".join(args) for args, _ in self.calls]


@pytest.fixture
def fake_tools() -> FakeToolRunner:
    return FakeToolRunner()


def make_steps(*names: str, mandatory: tuple[str, ...] = ()) -> tuple[ExecutionStep, ...]:
    return tuple(
        ExecutionStep(index=i, rule_name=name, is_mandatory=name in mandatory)
        for i, name in enumerate(names, start=1)
    )


@pytest.fixture
def rules_dir(temp_dir: Path) -> Path:
    path = temp_dir / "home" / ".claude" / "skills" / "ravel-fh" / "rules"
    path.mkdir(parents=True)
    return path


def install_rules(rules_dir: Path, *names: str, extension: str = ".md") -> None:
    for name in names:
        (rules_dir / f"{name}{extension}").write_text(f"# {name}\n", encoding="utf-8")


def make_run_config(temp_dir: Path, rules_dir: Path, steps: tuple[ExecutionStep, ...], model: str | None = "sonnet") -> RunConfig:
    project = temp_dir / "project"
    return RunConfig(
        bundle_id="flutter_health",
        bundle_name="ravel-fh",
        display_name="Flutter Project Health Audit",
        tech_prefix="flutter",
        agent=Agent.CLAUDE,
        steps=steps,
        rule_base_path=rules_dir,
        template_path=rules_dir.parent / "templates" / "flutter_report_template.txt",
        artifacts_dir=project / "reports" / ".artifacts",
        report_path=project / "reports" / "flutter_audit.txt",
        model=model,
    )


def usage(input_tokens: int, output_tokens: int, cost: float | None = None) -> TokenUsage:
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, cost_usd=cost)
