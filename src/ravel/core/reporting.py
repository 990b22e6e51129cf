"""Live progress and summary output for a run."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ravel.core.models import PreflightResult, RunConfig, RunSummary, StepResult

DIVIDER = "─" * 52


def format_duration(seconds: float) -> str:
    """45 -> '45s', 125 -> '2m 5s'."""
    whole = int(seconds)
    if whole < 60:
        return f"{whole}s"
    minutes, remaining = divmod(whole, 60)
    return f"{minutes}m {remaining}s"


def format_tokens(tokens: int) -> str:
    """38200 -> '38.2K'."""
    if tokens < 1000:
        return str(tokens)
    return f"{tokens / 1000:.1f}K"


def format_step_stats(result: StepResult) -> str:
    """Per-step stats: input/output tokens, time and cost when available."""
    usage = result.token_usage
    if usage is None:
        return format_duration(result.duration_seconds)

    stats = (
        f"IT: {format_tokens(usage.total_input_tokens)}  "
        f"OT: {format_tokens(usage.output_tokens)}  "
        f"Time: {format_duration(result.duration_seconds)}"
    )
    if usage.cost_usd is not None:
        stats += f"  Cost: ${usage.cost_usd:.2f}"
    return stats


class RunReporter:
    """Prints one line per step and a final summary using Rich."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def ok(self, message: str) -> None:
        self.console.print(f"[green]OK[/green] {message}")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]{message}[/red]")

    def preflight_finished(self, result: PreflightResult) -> None:
        if not result.has_artifacts:
            return
        self.ok(f"Pre-flight produced {len(result.artifacts)} artifact(s) in {format_duration(result.duration_seconds)}")
        for rule_name, artifact in result.artifacts.items():
            status = "[green]PASSED[/green]" if "**Status:** PASSED" in artifact else "[red]FAILED[/red]"
            self.console.print(f"    {rule_name:<32} {status}")

    def cleaned(self, artifacts_removed: int, report_removed: bool) -> None:
        if artifacts_removed:
            self.ok(f"Cleaned {artifacts_removed} previous artifact(s).")
        if report_removed:
            self.ok("Cleaned previous report.")

    def plan_header(self, config: RunConfig, preflight_count: int, agent_name: str) -> None:
        ai_count = len(config.steps) - preflight_count
        self.console.print()
        self.console.print(f"[bold]{config.display_name}[/bold]")
        self.console.print("=" * len(config.display_name))
        self.console.print(
            f"Steps: {len(config.steps)} ({preflight_count} pre-flight, {ai_count} AI) | "
            f"Agent: {agent_name} ({config.model or 'default'})"
        )
        self.console.print(f"Artifacts: {config.artifacts_dir}")
        self.console.print(f"Report: {config.report_path}")
        self.console.print()

    def step_finished(self, result: StepResult, total: int) -> None:
        step = result.step
        label = f"Step {step.index}/{total}: {step.rule_name}"

        if result.success:
            detail = "(pre-flight)" if result.preflight else format_step_stats(result)
            self.console.print(f"[green]✓[/green] {label}  [dim]{detail}[/dim]")
            return

        stats = f"  {format_step_stats(result)}" if result.token_usage else ""
        if step.is_mandatory:
            self.console.print(f"[red]✗ {label}{stats}  FAILED (MANDATORY, aborting)[/red]")
            if result.error_message:
                self.error(result.error_message)
        else:
            self.console.print(f"[yellow]✗ {label}{stats}  FAILED (continuing)[/yellow]")
            if result.error_message:
                self.warn(result.error_message)

    def summary(self, summary: RunSummary, report_path: Path | None) -> None:
        self.console.print()
        if summary.aborted:
            self.error(f"Audit ABORTED at mandatory step. {summary.succeeded}/{summary.total_steps} steps completed.")
        elif summary.failed:
            self.warn(
                f"Audit completed with warnings. {summary.succeeded}/{summary.total_steps} steps succeeded, "
                f"{summary.failed} failed: {', '.join(summary.failed_rules)}"
            )
        else:
            self.console.print(
                f"[bold green]Audit completed successfully! {summary.succeeded}/{summary.total_steps} steps in "
                f"{format_duration(summary.total_seconds)}.[/bold green]"
            )

        if summary.usage is not None:
            self.console.print(DIVIDER)
            self.console.print(
                f"Total tokens  ─  Input: {format_tokens(summary.usage.total_input_tokens)}  "
                f"Output: {format_tokens(summary.usage.output_tokens)}"
            )
            if summary.total_cost_usd is not None:
                self.console.print(f"Total cost    ─  ${summary.total_cost_usd:.2f}")
            self.console.print(
                f"Total time    ─  {format_duration(summary.total_seconds)}  "
                f"(AI: {format_duration(summary.ai_seconds)} | Pre-flight: ~{format_duration(summary.preflight_seconds)})"
            )
            self.console.print(DIVIDER)

        if report_path is not None:
            self.console.print()
            self.console.print(f"Report saved to: {report_path}")
