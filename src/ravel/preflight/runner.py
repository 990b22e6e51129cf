"""Dispatch from technology prefix to its pre-flight procedure."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from ravel.core.models import PreflightResult
from ravel.preflight.base import PreflightProcedure
from ravel.preflight.flutter import FlutterPreflight
from ravel.preflight.nestjs import NestjsPreflight
from ravel.preflight.tools import ToolRunner

logger = logging.getLogger(__name__)

ProcedureFactory = Callable[[ToolRunner], PreflightProcedure]

DEFAULT_PROCEDURES: dict[str, ProcedureFactory] = {
    "flutter": FlutterPreflight,
    "nestjs": NestjsPreflight,
}


class PreflightRunner:
    """Runs deterministic setup work once per run, before any AI step.

    Tool installs, version pinning and test runs are mechanical; doing them
    here turns the matching plan steps into ready-made artifacts. Unknown
    prefixes produce an empty result, so every step goes to the agent.
    """

    def __init__(
        self,
        procedures: dict[str, ProcedureFactory] | None = None,
        tools: ToolRunner | None = None,
    ) -> None:
        self.procedures = DEFAULT_PROCEDURES if procedures is None else procedures
        self.tools = tools or ToolRunner()

    def supports(self, tech_prefix: str) -> bool:
        return tech_prefix in self.procedures

    async def run(self, tech_prefix: str, project_dir: Path) -> PreflightResult:
        factory = self.procedures.get(tech_prefix)
        if factory is None:
            logger.debug(f"No pre-flight procedure for {tech_prefix!r}")
            return PreflightResult()

        start_time = time.monotonic()
        procedure = factory(self.tools)
        artifacts = await procedure.run(project_dir)
        duration = time.monotonic() - start_time
        logger.info(f"Pre-flight produced {len(artifacts)} artifact(s) in {duration:.1f}s")
        return PreflightResult(artifacts=artifacts, duration_seconds=duration)
