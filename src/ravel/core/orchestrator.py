"""Main orchestration logic: one audit run from validation to summary."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from ravel.config import Config
from ravel.core.content import ContentLoader, find_content_root
from ravel.core.errors import RunSetupError
from ravel.core.models import (
    Agent,
    Bundle,
    PreflightResult,
    RunConfig,
    RunOutcome,
    RunSummary,
    StepResult,
    TokenUsage,
)
from ravel.core.registry import BundleRegistry
from ravel.core.reporting import RunReporter
from ravel.core.validator import validate_project
from ravel.parsers.plan import parse_plan
from ravel.preflight.runner import PreflightRunner
from ravel.runners.agents import AGENT_SPECS, AgentInvoker, create_invoker
from ravel.runners.executor import StepExecutor, is_report_step
from ravel.runners.resolver import AgentResolver

logger = logging.getLogger(__name__)

InvokerFactory = Callable[[Agent, Path, int | None], AgentInvoker]
ConfirmFunc = Callable[[Bundle], bool]


def summarize(
    results: list[StepResult],
    total_steps: int,
    aborted: bool,
    preflight_seconds: float = 0.0,
) -> RunSummary:
    """Aggregate step results into run totals.

    AI time covers agent steps only; steps substituted by pre-flight count
    toward pre-flight time together with the pre-flight wall time.
    """
    succeeded = sum(1 for r in results if r.success)
    failed_rules = [r.step.rule_name for r in results if not r.success]

    ai_seconds = sum(r.duration_seconds for r in results if not r.preflight)
    preflight_total = preflight_seconds + sum(r.duration_seconds for r in results if r.preflight)

    usage: TokenUsage | None = None
    for result in results:
        if result.token_usage is None:
            continue
        usage = result.token_usage if usage is None else usage + result.token_usage

    return RunSummary(
        total_steps=total_steps,
        succeeded=succeeded,
        failed=len(failed_rules),
        aborted=aborted,
        failed_rules=failed_rules,
        total_seconds=ai_seconds + preflight_total,
        ai_seconds=ai_seconds,
        preflight_seconds=preflight_total,
        usage=usage,
    )


def clean_previous_run(artifacts_dir: Path, report_path: Path) -> tuple[int, bool]:
    """Remove ``*.md`` artifacts and the report left by an earlier run.

    Returns:
        Number of artifacts removed and whether a report was removed.
    """
    removed = 0
    if artifacts_dir.is_dir():
        for artifact in artifacts_dir.glob("*.md"):
            if artifact.is_file():
                artifact.unlink()
                removed += 1

    report_removed = report_path.is_file()
    if report_removed:
        report_path.unlink()

    return removed, report_removed


class RunOrchestrator:
    """Coordinates one audit run.

    Every collaborator is injectable so tests can swap in fakes for the agent
    subprocess, the tool runner and the confirmation prompt.
    """

    def __init__(
        self,
        project_root: Path,
        config: Config | None = None,
        registry: BundleRegistry | None = None,
        resolver: AgentResolver | None = None,
        preflight: PreflightRunner | None = None,
        content: ContentLoader | None = None,
        invoker_factory: InvokerFactory = create_invoker,
        reporter: RunReporter | None = None,
        confirm: ConfirmFunc | None = None,
    ) -> None:
        self.project_root = project_root.resolve()
        self.config = config or Config.load()
        self.registry = registry or BundleRegistry()
        self.resolver = resolver or AgentResolver()
        self.preflight = preflight or PreflightRunner()
        self._content = content
        self.invoker_factory = invoker_factory
        self.reporter = reporter or RunReporter()
        self.confirm = confirm

    @property
    def content(self) -> ContentLoader:
        if self._content is None:
            self._content = ContentLoader(find_content_root(self.config.resolved_content_root()))
        return self._content

    # =========================================================================
    # Agent and model selection
    # =========================================================================

    def select_agent(self, preferred: Agent | None = None) -> Agent:
        """Resolve the agent to use, falling back to the configured one.

        Raises:
            RunSetupError: If the agent (or any agent) is not installed.
        """
        if preferred is None and self.config.agent is not None:
            preferred = Agent(self.config.agent)

        agent = self.resolver.resolve(preferred)
        if agent is None:
            raise RunSetupError(self.resolver.missing_agent_message(preferred))
        return agent

    def select_model(self, agent: Agent, model: str | None = None) -> str:
        """Pick and validate the model. Defaults to the agent's first listed model."""
        model = model or self.config.model or AGENT_SPECS[agent].default_model
        error = self.resolver.validate_model(agent, model)
        if error:
            raise RunSetupError(error, usage=True)
        return model

    def fallback_model(self, agent: Agent) -> str | None:
        configured = self.config.fallback_model
        if configured is None:
            return AGENT_SPECS[agent].fallback_model
        return configured or None

    # =========================================================================
    # Run
    # =========================================================================

    def prepare(self, bundle: Bundle, agent: Agent, model: str | None = None) -> RunConfig:
        """Resolve paths and parse the bundle's plan into a RunConfig.

        Raises:
            RunSetupError: If the plan is missing or has no execution steps.
        """
        try:
            plan_text = self.content.load_plan(bundle)
        except FileNotFoundError as e:
            raise RunSetupError(f"Plan file not found: {self.content.plan_file(bundle)}") from e

        steps = parse_plan(plan_text)
        if not steps:
            raise RunSetupError(f"No execution steps found in plan: {self.content.plan_file(bundle)}")

        return RunConfig(
            bundle_id=bundle.id,
            bundle_name=bundle.name,
            display_name=bundle.display_name,
            tech_prefix=bundle.tech_prefix,
            agent=agent,
            steps=tuple(steps),
            rule_base_path=self.resolver.rule_base_path(agent, bundle.name, bundle.plan_subdir),
            template_path=self.resolver.template_path(agent, bundle.name, bundle.plan_subdir, bundle.template_file),
            artifacts_dir=self.config.artifacts_dir(self.project_root),
            report_path=self.config.report_path(self.project_root, bundle.report_file),
            model=model,
        )

    async def run(self, bundle: Bundle, agent: Agent | None = None, model: str | None = None) -> RunOutcome:
        """Execute one bundle end to end.

        Raises:
            RunSetupError: If anything required before the first step is missing.
        """
        if self.config.validate_project:
            error = validate_project(bundle.tech_prefix, self.project_root)
            if error:
                raise RunSetupError(error)

        selected = self.select_agent(agent)
        run_config = self.prepare(bundle, selected, self.select_model(selected, model))

        preflight = await self._run_preflight(run_config)

        ai_rules = [s.rule_name for s in run_config.steps if preflight.artifact_for(s.rule_name) is None]
        error = self.resolver.verify_installation(selected, run_config.rule_base_path, ai_rules)
        if error:
            raise RunSetupError(error)

        self.reporter.cleaned(*clean_previous_run(run_config.artifacts_dir, run_config.report_path))
        run_config.artifacts_dir.mkdir(parents=True, exist_ok=True)

        preflight_count = len(run_config.steps) - len(ai_rules)
        self.reporter.plan_header(run_config, preflight_count, self.resolver.display_name(selected))

        results, aborted = await self._execute_steps(run_config, preflight)
        summary = summarize(results, len(run_config.steps), aborted, preflight.duration_seconds)

        report_path = run_config.report_path if not aborted and run_config.report_path.exists() else None
        self.reporter.summary(summary, report_path)

        return RunOutcome(
            config=run_config,
            results=results,
            summary=summary,
            report_path=report_path,
            follow_up=None if aborted else self.registry.follow_up_for(bundle),
        )

    async def run_with_follow_up(
        self,
        bundle: Bundle,
        agent: Agent | None = None,
        model: str | None = None,
    ) -> list[RunOutcome]:
        """Run a bundle, then the follow-up bundle if the user confirms it."""
        outcome = await self.run(bundle, agent, model)
        outcomes = [outcome]

        follow_up = outcome.follow_up
        if follow_up is None or self.confirm is None or not self.confirm(follow_up):
            return outcomes

        logger.info(f"Chaining into {follow_up.id}")
        outcomes.append(await self.run(follow_up, outcome.config.agent, outcome.config.model))
        return outcomes

    async def _run_preflight(self, run_config: RunConfig) -> PreflightResult:
        if not self.config.preflight or not self.preflight.supports(run_config.tech_prefix):
            return PreflightResult()

        self.reporter.console.print(f"Running pre-flight for {run_config.tech_prefix}...")
        result = await self.preflight.run(run_config.tech_prefix, self.project_root)
        self.reporter.preflight_finished(result)
        return result

    async def _execute_steps(
        self,
        run_config: RunConfig,
        preflight: PreflightResult,
    ) -> tuple[list[StepResult], bool]:
        invoker = self.invoker_factory(run_config.agent, self.project_root, self.config.step_timeout)
        executor = StepExecutor(run_config, invoker, fallback_model=self.fallback_model(run_config.agent))
        total = len(run_config.steps)

        results: list[StepResult] = []
        for step in run_config.steps:
            artifact = preflight.artifact_for(step.rule_name)
            if artifact is not None:
                result = executor.write_preflight_artifact(step, artifact)
            elif is_report_step(step):
                result = await executor.execute_report_generator(step)
            else:
                result = await executor.execute(step)

            results.append(result)
            self.reporter.step_finished(result, total)

            if not result.success and step.is_mandatory:
                logger.warning(f"Mandatory step {step.rule_name} failed, aborting run")
                return results, True

        return results, False
