"""Parser for the rule execution order section of a bundle plan."""

from __future__ import annotations

import logging
import re
from enum import Enum

from ravel.core.models import ExecutionStep

logger = logging.getLogger(__name__)

# **Rule Execution Order**:  /  **Rule Execution Order:**  /  Rule execution order:
SECTION_PATTERN = re.compile(r"[*_]*\s*rule\s+execution\s+order\s*[*_]*\s*:", re.IGNORECASE)

# 2. `@flutter_version_alignment` (MANDATORY - stops if FVM global fails)
STEP_PATTERN = re.compile(r"^\s*(\d+)\.\s+`?@?([\w-]+)`?\s*(.*?)\s*$")

ANNOTATION_PATTERN = re.compile(r"\((.+)\)")

MANDATORY_MARKER = "MANDATORY"


class ParserState(str, Enum):
    """Where the scanner is relative to the execution order list."""

    BEFORE_SECTION = "before_section"
    IN_LIST = "in_list"
    DONE = "done"


def is_new_section(line: str) -> bool:
    """Check if a line opens a new markdown block rather than continuing a step."""
    trimmed = line.lstrip()
    return trimmed.startswith(("#", "**", "__", "- ", "* "))


class PlanParser:
    """Extracts ordered execution steps from plan text.

    Expected format:
    ```markdown
    **Rule Execution Order**:
    1. `@flutter_tool_installer`
    2. `@flutter_version_alignment` (MANDATORY - stops if FVM global fails)
    3. `@flutter_report_generator`
    ```

    The list ends at the first blank line or new section after a step has been
    read. Indented lines in between are treated as wrapped annotations.
    """

    def parse(self, plan_text: str) -> list[ExecutionStep]:
        """Parse plan text into steps. Returns [] when the section is missing."""
        state = ParserState.BEFORE_SECTION
        steps: list[ExecutionStep] = []

        for line in plan_text.splitlines():
            state = self._advance(state, line, steps)
            if state is ParserState.DONE:
                break

        if state is ParserState.BEFORE_SECTION:
            logger.debug("No rule execution order section found")
        return steps

    def _advance(self, state: ParserState, line: str, steps: list[ExecutionStep]) -> ParserState:
        """Consume one line and return the next state."""
        if state is ParserState.BEFORE_SECTION:
            section = SECTION_PATTERN.search(line)
            if section is None:
                return state
            # A step may follow the label on the same line
            line = line[section.end() :]
            state = ParserState.IN_LIST

        match = STEP_PATTERN.match(line)
        if match is not None:
            index = int(match.group(1))
            if steps and index <= steps[-1].index:
                logger.warning(f"Step numbering restarts at {index}; ignoring the rest of the list")
                return ParserState.DONE
            steps.append(_build_step(index, match.group(2), match.group(3)))
            return state

        if not steps:
            # Still between the section label and the first step
            return state

        if not line.strip() or is_new_section(line):
            return ParserState.DONE

        # Continuation of a wrapped annotation
        return state


def _build_step(index: int, rule_name: str, remainder: str) -> ExecutionStep:
    annotation_match = ANNOTATION_PATTERN.search(remainder)
    annotation = annotation_match.group(1).strip() if annotation_match else None
    is_mandatory = annotation is not None and MANDATORY_MARKER in annotation.upper()
    return ExecutionStep(
        index=index,
        rule_name=rule_name,
        is_mandatory=is_mandatory,
        annotation=annotation,
    )


def parse_plan(plan_text: str) -> list[ExecutionStep]:
    """Convenience wrapper around PlanParser().parse()."""
    return PlanParser().parse(plan_text)
