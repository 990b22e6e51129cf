"""Classification of failed agent processes."""

from __future__ import annotations

import re
from enum import Enum

from ravel.core.models import ProcessOutcome


class FailureKind(str, Enum):
    """Why an agent process failed."""

    MODEL_NOT_FOUND = "model_not_found"
    QUOTA = "quota"
    AUTH = "auth"
    GENERIC = "generic"


# Checked in order; the first group with a hit wins.
# Numeric HTTP codes match whole numbers only so token counts in JSON don't trigger them.
FAILURE_MARKERS: tuple[tuple[FailureKind, re.Pattern[str]], ...] = (
    (
        FailureKind.MODEL_NOT_FOUND,
        re.compile(r"not_found|model not found|requested entity was not found"),
    ),
    (
        FailureKind.QUOTA,
        re.compile(r"capacity|resource_exhausted|rate_limit|rate limit|\b429\b"),
    ),
    (
        FailureKind.AUTH,
        re.compile(r"unauthenticated|permission_denied|\b401\b|\b403\b"),
    ),
)


def classify_failure(outcome: ProcessOutcome) -> FailureKind:
    """Classify a process result from its combined output (case-insensitive)."""
    combined = f"{outcome.stderr} {outcome.stdout}".lower()
    for kind, pattern in FAILURE_MARKERS:
        if pattern.search(combined):
            return kind
    return FailureKind.GENERIC


def describe_failure(outcome: ProcessOutcome, model: str | None, agent_name: str) -> str:
    """Human-readable remediation message for a failed process."""
    kind = classify_failure(outcome)
    if kind is FailureKind.MODEL_NOT_FOUND:
        return f'Model "{model}" not found. Verify the model name is correct or try a different model.'
    if kind is FailureKind.QUOTA:
        return (
            f'No capacity available for model "{model}". '
            "You may not have an active subscription or sufficient quota for this model. "
            "Try a different model."
        )
    if kind is FailureKind.AUTH:
        return f"Authentication failed. Verify you are logged in to the {agent_name} CLI."
    return f"Process exited with code {outcome.exit_code}"


def is_retryable(outcome: ProcessOutcome) -> bool:
    """Only quota/capacity exhaustion is worth retrying on a fallback model."""
    return classify_failure(outcome) is FailureKind.QUOTA
