"""Tests for the run orchestrator."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import SAMPLE_PLAN, FakeInvoker, FakeToolRunner, install_rules, make_steps, write_output
from rich.console import Console

from ravel.config import Config
from ravel.core.content import ContentLoader
from ravel.core.errors import RunSetupError
from ravel.core.models import Agent, Bundle, ProcessOutcome, StepResult, TokenUsage
from ravel.core.orchestrator import RunOrchestrator, clean_previous_run, summarize
from ravel.core.registry import BundleRegistry
from ravel.core.reporting import RunReporter
from ravel.preflight.runner import PreflightRunner
from ravel.runners.resolver import AgentResolver

FLUTTER_RULES = (
    "flutter_tool_installer",
    "flutter_version_alignment",
    "flutter_test_coverage",
    "flutter_code_quality",
    "flutter_report_generator",
)

SECURITY_PLAN = """# Security Audit

**Rule Execution Order**:
1. `@security_secrets_scan`
2. `@security_report_generator`
"""


class Workspace:
    """Temporary content root, home directory and project for one test."""

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()
        self.content = self.root / "content"
        self.home = self.root / "home"
        self.project = self.root / "project"
        self.project.mkdir()
        (self.project / "pubspec.yaml").write_text("name: app\n")

        self.registry = BundleRegistry()
        self.write_plan(self.bundle("fh"), SAMPLE_PLAN)
        self.write_plan(self.bundle("sa"), SECURITY_PLAN)
        install_rules(self.rules("ravel-fh"), *FLUTTER_RULES)
        install_rules(self.rules("ravel-sa"), "security_secrets_scan", "security_report_generator")

    def bundle(self, code: str) -> Bundle:
        bundle = self.registry.find_by_code(code)
        assert bundle is not None
        return bundle

    def write_plan(self, bundle: Bundle, text: str) -> None:
        path = self.content / bundle.plan_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def rules(self, bundle_name: str) -> Path:
        path = self.home / ".claude" / "skills" / bundle_name / "rules"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def orchestrator(
        self,
        invoker: FakeInvoker,
        config: Config | None = None,
        preflight: PreflightRunner | None = None,
        installed: tuple[str, ...] = ("claude",),
        confirm=None,
    ) -> RunOrchestrator:
        self.factory_calls: list[tuple[Agent, Path, int | None]] = []

        def factory(agent: Agent, project_root: Path, timeout: int | None) -> FakeInvoker:
            self.factory_calls.append((agent, project_root, timeout))
            return invoker

        return RunOrchestrator(
            self.project,
            config=config or Config(),
            registry=self.registry,
            resolver=AgentResolver(home=self.home, which=lambda name: f"/bin/{name}" if name in installed else None),
            preflight=preflight or PreflightRunner(procedures={}),
            content=ContentLoader(self.content),
            invoker_factory=factory,
            reporter=RunReporter(Console(force_terminal=False, quiet=True)),
            confirm=confirm,
        )


@pytest.fixture
def workspace(temp_dir: Path) -> Workspace:
    return Workspace(temp_dir)


def fail_rule(*rule_names: str):
    """Handler failing every step whose rule file is one of ``rule_names``."""

    def handler(prompt: str, model: str | None) -> ProcessOutcome:
        if any(f"{name}.md" in prompt for name in rule_names):
            return ProcessOutcome(exit_code=1, stderr="crash")
        write_output(prompt)
        return ProcessOutcome(exit_code=0)

    return handler


class TestRun:
    """Tests for RunOrchestrator.run."""

    async def test_successful_run(self, workspace: Workspace) -> None:
        invoker = FakeInvoker(workspace.project)
        orchestrator = workspace.orchestrator(invoker)

        outcome = await orchestrator.run(workspace.bundle("fh"))

        assert len(outcome.results) == 5
        assert all(r.success for r in outcome.results)
        assert outcome.summary.succeeded == 5
        assert outcome.summary.aborted is False
        assert outcome.report_path == workspace.project / "reports" / "flutter_audit.txt"
        assert outcome.follow_up is not None
        assert outcome.follow_up.id == "security_audit"

        artifacts = sorted(p.name for p in (workspace.project / "reports" / ".artifacts").iterdir())
        assert artifacts == [
            "step_01_flutter_tool_installer.md",
            "step_02_flutter_version_alignment.md",
            "step_03_flutter_test_coverage.md",
            "step_04_flutter_code_quality.md",
        ]
        # Claude's first listed model is the default
        assert {model for _, model in invoker.calls} == {"haiku"}

    async def test_preflight_artifacts_replace_agent_steps(self, workspace: Workspace) -> None:
        invoker = FakeInvoker(workspace.project)
        orchestrator = workspace.orchestrator(invoker, preflight=PreflightRunner(tools=FakeToolRunner()))

        outcome = await orchestrator.run(workspace.bundle("fh"))

        by_rule = {r.step.rule_name: r for r in outcome.results}
        assert by_rule["flutter_tool_installer"].preflight is True
        assert by_rule["flutter_test_coverage"].preflight is True
        # No .fvmrc, so version alignment stays with the agent
        assert by_rule["flutter_version_alignment"].preflight is False

        prompted = [output.name for output in invoker.outputs]
        assert prompted == [
            "step_02_flutter_version_alignment.md",
            "step_04_flutter_code_quality.md",
            "flutter_audit.txt",
        ]
        installer = by_rule["flutter_tool_installer"].artifact_path.read_text()
        assert "**Source:** ravel pre-flight (deterministic, no AI)" in installer

    async def test_preflight_disabled(self, workspace: Workspace) -> None:
        tools = FakeToolRunner()
        invoker = FakeInvoker(workspace.project)
        orchestrator = workspace.orchestrator(
            invoker,
            config=Config(preflight=False),
            preflight=PreflightRunner(tools=tools),
        )

        await orchestrator.run(workspace.bundle("fh"))

        assert tools.calls == []
        assert len(invoker.calls) == 5

    async def test_mandatory_failure_aborts(self, workspace: Workspace) -> None:
        invoker = FakeInvoker(workspace.project, handler=fail_rule("flutter_tool_installer", "flutter_version_alignment"))
        orchestrator = workspace.orchestrator(invoker)

        outcome = await orchestrator.run(workspace.bundle("fh"))

        assert [r.success for r in outcome.results] == [False, False]
        assert len(invoker.calls) == 2
        assert not any("flutter_test_coverage.md" in prompt for prompt, _ in invoker.calls)
        assert outcome.summary.aborted is True
        assert outcome.summary.total_steps == 5
        assert outcome.summary.succeeded == 0
        assert outcome.summary.failed == 2
        assert outcome.report_path is None
        assert outcome.follow_up is None

    async def test_optional_failure_continues(self, workspace: Workspace) -> None:
        invoker = FakeInvoker(workspace.project, handler=fail_rule("flutter_code_quality"))
        orchestrator = workspace.orchestrator(invoker)

        outcome = await orchestrator.run(workspace.bundle("fh"))

        assert len(outcome.results) == 5
        assert outcome.summary.completed_with_warnings is True
        assert outcome.summary.failed_rules == ["flutter_code_quality"]
        assert outcome.report_path is not None

    async def test_rerun_cleans_previous_artifacts(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project))
        artifacts_dir = workspace.project / "reports" / ".artifacts"
        artifacts_dir.mkdir(parents=True)
        stale = artifacts_dir / "step_09_removed_rule.md"
        stale.write_text("old")
        keep = artifacts_dir / "notes.txt"
        keep.write_text("not an artifact")

        first = await orchestrator.run(workspace.bundle("fh"))
        first_names = sorted(p.name for p in artifacts_dir.glob("*.md"))
        second = await orchestrator.run(workspace.bundle("fh"))

        assert not stale.exists()
        assert keep.exists()
        assert sorted(p.name for p in artifacts_dir.glob("*.md")) == first_names
        assert first.summary.succeeded == second.summary.succeeded == 5

    async def test_step_timeout_reaches_invoker(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project), config=Config(step_timeout=600))

        await orchestrator.run(workspace.bundle("fh"))

        assert workspace.factory_calls == [(Agent.CLAUDE, workspace.project.resolve(), 600)]


class TestSetupErrors:
    """Tests for failures before the first step."""

    async def test_wrong_project_type(self, workspace: Workspace) -> None:
        (workspace.project / "pubspec.yaml").unlink()
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project))

        with pytest.raises(RunSetupError, match="No pubspec.yaml found"):
            await orchestrator.run(workspace.bundle("fh"))

    async def test_validation_can_be_skipped(self, workspace: Workspace) -> None:
        (workspace.project / "pubspec.yaml").unlink()
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project), config=Config(validate_project=False))

        outcome = await orchestrator.run(workspace.bundle("fh"))

        assert outcome.summary.succeeded == 5

    async def test_no_agent_installed(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project), installed=())

        with pytest.raises(RunSetupError, match="No AI CLI found"):
            await orchestrator.run(workspace.bundle("fh"))

    async def test_invalid_model_is_usage_error(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project))

        with pytest.raises(RunSetupError) as exc_info:
            await orchestrator.run(workspace.bundle("fh"), model="gpt-5.2")

        assert exc_info.value.usage is True

    async def test_skills_not_installed(self, workspace: Workspace) -> None:
        invoker = FakeInvoker(workspace.project)
        orchestrator = workspace.orchestrator(invoker, installed=("agent",))

        with pytest.raises(RunSetupError, match="ravel cursor"):
            await orchestrator.run(workspace.bundle("fh"))
        assert invoker.calls == []

    async def test_empty_plan(self, workspace: Workspace) -> None:
        workspace.write_plan(workspace.bundle("fh"), "# Plan without steps\n")
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project))

        with pytest.raises(RunSetupError, match="No execution steps"):
            await orchestrator.run(workspace.bundle("fh"))

    async def test_missing_plan(self, workspace: Workspace) -> None:
        (workspace.content / workspace.bundle("fh").plan_path).unlink()
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project))

        with pytest.raises(RunSetupError, match="Plan file not found"):
            await orchestrator.run(workspace.bundle("fh"))


class TestFollowUp:
    """Tests for chaining into the security audit."""

    async def test_confirmed_follow_up_runs_with_same_agent(self, workspace: Workspace) -> None:
        invoker = FakeInvoker(workspace.project)
        offered: list[str] = []

        def confirm(bundle: Bundle) -> bool:
            offered.append(bundle.id)
            return True

        orchestrator = workspace.orchestrator(invoker, confirm=confirm)

        outcomes = await orchestrator.run_with_follow_up(workspace.bundle("fh"), model="sonnet")

        assert offered == ["security_audit"]
        assert [o.config.bundle_id for o in outcomes] == ["flutter_health", "security_audit"]
        assert outcomes[1].config.agent == Agent.CLAUDE
        assert outcomes[1].config.model == "sonnet"
        assert outcomes[1].follow_up is None

    async def test_declined_follow_up(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project), confirm=lambda bundle: False)

        outcomes = await orchestrator.run_with_follow_up(workspace.bundle("fh"))

        assert len(outcomes) == 1

    async def test_no_offer_after_abort(self, workspace: Workspace) -> None:
        offered: list[Bundle] = []
        invoker = FakeInvoker(workspace.project, handler=fail_rule("flutter_version_alignment"))
        orchestrator = workspace.orchestrator(invoker, confirm=lambda bundle: offered.append(bundle) or True)

        outcomes = await orchestrator.run_with_follow_up(workspace.bundle("fh"))

        assert len(outcomes) == 1
        assert offered == []


class TestModelSelection:
    """Tests for model and fallback resolution."""

    def test_fallback_defaults_to_cheapest(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project))

        assert orchestrator.fallback_model(Agent.CLAUDE) == "haiku"
        assert orchestrator.fallback_model(Agent.GEMINI) == "gemini-2.5-flash"

    def test_fallback_disabled(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project), config=Config(fallback_model=""))

        assert orchestrator.fallback_model(Agent.CLAUDE) is None

    def test_configured_model(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(FakeInvoker(workspace.project), config=Config(model="opus"))

        assert orchestrator.select_model(Agent.CLAUDE) == "opus"
        assert orchestrator.select_model(Agent.CLAUDE, "sonnet") == "sonnet"

    def test_configured_agent(self, workspace: Workspace) -> None:
        orchestrator = workspace.orchestrator(
            FakeInvoker(workspace.project),
            config=Config(agent="gemini"),
            installed=("claude", "gemini"),
        )

        assert orchestrator.select_agent() == Agent.GEMINI
        assert orchestrator.select_agent(Agent.CLAUDE) == Agent.CLAUDE


class TestSummarize:
    """Tests for run aggregation."""

    def _result(self, index: int, seconds: float, usage: TokenUsage | None = None, preflight: bool = False) -> StepResult:
        step = make_steps(*(f"rule_{i}" for i in range(1, index + 1)))[-1]
        return StepResult(
            step=step,
            success=True,
            artifact_path=Path(f"step_{index:02d}.md"),
            duration_seconds=seconds,
            token_usage=usage,
            preflight=preflight,
        )

    def test_usage_totals_without_cost(self) -> None:
        results = [
            self._result(1, 10, TokenUsage(input_tokens=200, output_tokens=30, cache_read_tokens=50)),
            self._result(2, 5),
            self._result(3, 20, TokenUsage(input_tokens=100, output_tokens=20)),
        ]

        summary = summarize(results, total_steps=3, aborted=False)

        assert summary.usage is not None
        assert summary.usage.total_input_tokens == 350
        assert summary.usage.output_tokens == 50
        assert summary.total_cost_usd is None

    def test_cost_reported_when_any_step_has_it(self) -> None:
        results = [
            self._result(1, 1, TokenUsage(input_tokens=1, cost_usd=0.25)),
            self._result(2, 1, TokenUsage(input_tokens=1)),
        ]

        assert summarize(results, 2, False).total_cost_usd == pytest.approx(0.25)

    def test_no_usage_at_all(self) -> None:
        assert summarize([self._result(1, 1)], 1, False).usage is None

    def test_time_split(self) -> None:
        results = [
            self._result(1, 0.5, preflight=True),
            self._result(2, 30),
            self._result(3, 12),
        ]

        summary = summarize(results, 3, False, preflight_seconds=60)

        assert summary.ai_seconds == pytest.approx(42)
        assert summary.preflight_seconds == pytest.approx(60.5)
        assert summary.total_seconds == pytest.approx(102.5)


class TestCleanPreviousRun:
    """Tests for clean_previous_run."""

    def test_nothing_to_clean(self, temp_dir: Path) -> None:
        assert clean_previous_run(temp_dir / "missing", temp_dir / "report.txt") == (0, False)

    def test_removes_markdown_and_report(self, temp_dir: Path) -> None:
        artifacts = temp_dir / ".artifacts"
        artifacts.mkdir()
        (artifacts / "step_01_a.md").write_text("a")
        (artifacts / "step_02_b.md").write_text("b")
        report = temp_dir / "flutter_audit.txt"
        report.write_text("report")

        assert clean_previous_run(artifacts, report) == (2, True)
        assert not report.exists()
