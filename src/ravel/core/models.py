"""Core data models for ravel."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Bundle / Agent Models
# =============================================================================


class Agent(str, Enum):
    """AI command-line agents that can execute a step."""

    CLAUDE = "claude"
    CURSOR = "cursor"
    GEMINI = "gemini"


class Bundle(BaseModel):
    """An audit definition: plan + rule set + report template for one technology."""

    model_config = ConfigDict(frozen=True)

    id: str
    code: str
    name: str
    display_name: str
    tech_prefix: str
    plan_path: str
    rules_dir: str
    template_path: str | None = None

    @property
    def plan_subdir(self) -> str:
        """Plan subdirectory, e.g. ``flutter_project_health_audit``."""
        parts = self.plan_path.split("/")
        return parts[1] if len(parts) >= 2 else self.id

    @property
    def template_file(self) -> str:
        """File name of the report template (empty when the bundle has none)."""
        if not self.template_path:
            return ""
        return self.template_path.rsplit("/", 1)[-1]

    @property
    def report_file(self) -> str:
        return f"{self.tech_prefix}_audit.txt"

    @property
    def is_health(self) -> bool:
        return self.id.endswith("_health")


# =============================================================================
# Plan Models
# =============================================================================


class ExecutionStep(BaseModel):
    """A single step parsed from a plan's rule execution order."""

    model_config = ConfigDict(frozen=True)

    index: int
    rule_name: str
    is_mandatory: bool = False
    annotation: str | None = None


class RunConfig(BaseModel):
    """Resolved configuration for one audit run. Read-only once built."""

    model_config = ConfigDict(frozen=True)

    bundle_id: str
    bundle_name: str
    display_name: str
    tech_prefix: str
    agent: Agent
    steps: tuple[ExecutionStep, ...]
    rule_base_path: Path
    template_path: Path
    artifacts_dir: Path
    report_path: Path
    model: str | None = None


# =============================================================================
# Execution Models
# =============================================================================


class TokenUsage(BaseModel):
    """Token usage reported by an agent invocation."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cost_usd: float | None = None

    @property
    def total_input_tokens(self) -> int:
        """Input tokens including both cache fields."""
        return self.input_tokens + self.cache_read_tokens + self.cache_creation_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        if self.cost_usd is None and other.cost_usd is None:
            cost = None
        else:
            cost = (self.cost_usd or 0.0) + (other.cost_usd or 0.0)
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cost_usd=cost,
        )


class ProcessOutcome(BaseModel):
    """Exit status and captured output of an agent process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class StepResult(BaseModel):
    """Outcome of running one execution step."""

    model_config = ConfigDict(frozen=True)

    step: ExecutionStep
    success: bool
    artifact_path: Path
    duration_seconds: float
    error_message: str | None = None
    token_usage: TokenUsage | None = None
    preflight: bool = False
    model: str | None = None
    attempts: int = 0


class PreflightResult(BaseModel):
    """Artifacts rendered by pre-flight, keyed by rule name."""

    artifacts: dict[str, str] = Field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def has_artifacts(self) -> bool:
        return bool(self.artifacts)

    def artifact_for(self, rule_name: str) -> str | None:
        return self.artifacts.get(rule_name)


# =============================================================================
# Run Summary Models
# =============================================================================


class RunSummary(BaseModel):
    """Aggregated statistics for a finished (or aborted) run."""

    total_steps: int
    succeeded: int
    failed: int
    aborted: bool = False
    failed_rules: list[str] = Field(default_factory=list)
    total_seconds: float = 0.0
    ai_seconds: float = 0.0
    preflight_seconds: float = 0.0
    usage: TokenUsage | None = None

    @property
    def total_cost_usd(self) -> float | None:
        return self.usage.cost_usd if self.usage else None

    @property
    def completed_with_warnings(self) -> bool:
        return not self.aborted and self.failed > 0


class RunOutcome(BaseModel):
    """Everything a caller needs after a run: config, results and summary."""

    config: RunConfig
    results: list[StepResult]
    summary: RunSummary
    report_path: Path | None = None
    follow_up: Bundle | None = None
