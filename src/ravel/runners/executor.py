"""Executes plan steps, each in a fresh agent process."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from ravel.core.models import ExecutionStep, ProcessOutcome, RunConfig, StepResult
from ravel.runners.agents import AgentInvoker
from ravel.runners.failures import describe_failure, is_retryable

logger = logging.getLogger(__name__)

REPORT_GENERATOR_SUFFIX = "_report_generator"


def is_report_step(step: ExecutionStep) -> bool:
    """The terminal aggregation step is identified by its rule name."""
    return step.rule_name.endswith(REPORT_GENERATOR_SUFFIX)


class StepExecutor:
    """Runs individual steps for one RunConfig.

    Each call spawns a separate agent process so no conversational state leaks
    between steps. The agent reads the step's rule file and writes its findings
    to a step-specific artifact file; the executor only checks the exit status
    and that the file exists.
    """

    def __init__(
        self,
        config: RunConfig,
        invoker: AgentInvoker,
        fallback_model: str | None = None,
    ) -> None:
        self.config = config
        self.invoker = invoker
        self.fallback_model = fallback_model

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def artifact_path(self, step: ExecutionStep) -> Path:
        return self.config.artifacts_dir / f"step_{step.index:02d}_{step.rule_name}.md"

    def rule_file_path(self, rule_name: str) -> Path:
        return self.config.rule_base_path / f"{rule_name}{self.invoker.spec.rule_extension}"

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def write_preflight_artifact(self, step: ExecutionStep, content: str) -> StepResult:
        """Write an artifact produced by pre-flight, skipping the agent."""
        artifact_path = self.artifact_path(step)
        start_time = time.monotonic()
        try:
            artifact_path.parent.mkdir(parents=True, exist_ok=True)
            artifact_path.write_text(content, encoding="utf-8")
        except OSError as e:
            return StepResult(
                step=step,
                success=False,
                artifact_path=artifact_path,
                duration_seconds=time.monotonic() - start_time,
                error_message=f"Failed to write pre-flight artifact: {e}",
                preflight=True,
            )
        return StepResult(
            step=step,
            success=True,
            artifact_path=artifact_path,
            duration_seconds=time.monotonic() - start_time,
            preflight=True,
        )

    async def execute(self, step: ExecutionStep) -> StepResult:
        """Run a standard step: the agent reads the rule and writes an artifact."""
        artifact_path = self.artifact_path(step)
        rule_file = self.rule_file_path(step.rule_name)
        prompt = self.build_step_prompt(step, rule_file, artifact_path)
        return await self._run_agent_step(step, rule_file, prompt, artifact_path, "Artifact")

    async def execute_report_generator(self, step: ExecutionStep) -> StepResult:
        """Run the terminal step: read every artifact plus the template, write the report."""
        report_path = self.config.report_path
        rule_file = self.rule_file_path(step.rule_name)
        prompt = self.build_report_prompt(rule_file, report_path)
        return await self._run_agent_step(step, rule_file, prompt, report_path, "Report")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _run_agent_step(
        self,
        step: ExecutionStep,
        rule_file: Path,
        prompt: str,
        output_path: Path,
        output_label: str,
    ) -> StepResult:
        start_time = time.monotonic()

        if not rule_file.exists():
            return StepResult(
                step=step,
                success=False,
                artifact_path=output_path,
                duration_seconds=time.monotonic() - start_time,
                error_message=f"Rule file not found: {rule_file}",
            )

        model = self.config.model
        outcome = await self.invoker.invoke(prompt, model)
        attempts = 1

        if self._should_retry(outcome, model):
            logger.info(f'Quota exceeded for "{model}", retrying with "{self.fallback_model}"')
            model = self.fallback_model
            outcome = await self.invoker.invoke(prompt, model)
            attempts = 2

        output_exists = output_path.exists()
        if not outcome.succeeded:
            error_message: str | None = describe_failure(outcome, model, self.invoker.spec.display_name)
            logger.debug(f"Step {step.index} stderr: {outcome.stderr.strip()[:500]}")
        elif not output_exists:
            error_message = f"{output_label} not created: {output_path}"
        else:
            error_message = None

        return StepResult(
            step=step,
            success=outcome.succeeded and output_exists,
            artifact_path=output_path,
            duration_seconds=time.monotonic() - start_time,
            error_message=error_message,
            token_usage=self.invoker.parse_usage(outcome.stdout),
            model=model,
            attempts=attempts,
        )

    def _should_retry(self, outcome: ProcessOutcome, model: str | None) -> bool:
        return (
            not outcome.succeeded
            and self.fallback_model is not None
            and self.fallback_model != model
            and is_retryable(outcome)
        )

    def build_step_prompt(self, step: ExecutionStep, rule_file: Path, artifact_path: Path) -> str:
        artifacts_dir = self.config.artifacts_dir.as_posix()
        return (
            f"You are executing step {step.index} of {len(self.config.steps)} in the {self.config.display_name}.\n\n"
            f"{self.invoker.read_instruction(rule_file)}\n\n"
            f"Save your complete findings to: {artifact_path.as_posix()}\n"
            "Include: status, key findings, evidence (file paths and line numbers), and any scores.\n\n"
            "Create the directory if it does not exist:\n"
            f"mkdir -p {artifacts_dir}\n\n"
            "IMPORTANT: You MUST write your findings to the artifact file above."
        )

    def build_report_prompt(self, rule_file: Path, report_path: Path) -> str:
        return (
            f"You are generating the final audit report for the {self.config.display_name}.\n\n"
            f"Read ALL files in {self.config.artifacts_dir.as_posix()}/ to gather findings "
            "from all previous analysis steps.\n\n"
            f"{self.invoker.report_instruction(rule_file)}\n\n"
            f"Read {self.config.template_path.as_posix()} for the report format template.\n\n"
            f"Save the final report to: {report_path.as_posix()}\n"
            "The report MUST be in plain text format suitable for Google Docs.\n\n"
            "Create the directory if it does not exist:\n"
            f"mkdir -p {report_path.parent.as_posix()}\n\n"
            "IMPORTANT: You MUST write the complete report to the file above."
        )
