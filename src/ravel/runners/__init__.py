"""Agent runners: detection, invocation and step execution."""

from ravel.runners.agents import AGENT_SPECS, AgentInvoker, AgentSpec, create_invoker
from ravel.runners.executor import StepExecutor, is_report_step
from ravel.runners.failures import FailureKind, classify_failure
from ravel.runners.resolver import AgentResolver

__all__ = [
    "AGENT_SPECS",
    "AgentInvoker",
    "AgentResolver",
    "AgentSpec",
    "FailureKind",
    "StepExecutor",
    "classify_failure",
    "create_invoker",
    "is_report_step",
]
