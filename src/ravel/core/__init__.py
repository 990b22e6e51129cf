"""Core models, bundle registry and run orchestration."""

from ravel.core.errors import ContentRootError, RavelError, RunSetupError
from ravel.core.models import (
    Agent,
    Bundle,
    ExecutionStep,
    PreflightResult,
    RunConfig,
    RunOutcome,
    RunSummary,
    StepResult,
    TokenUsage,
)
from ravel.core.registry import BundleRegistry

__all__ = [
    "Agent",
    "Bundle",
    "BundleRegistry",
    "ContentRootError",
    "ExecutionStep",
    "PreflightResult",
    "RavelError",
    "RunConfig",
    "RunOutcome",
    "RunSetupError",
    "RunSummary",
    "StepResult",
    "TokenUsage",
]
