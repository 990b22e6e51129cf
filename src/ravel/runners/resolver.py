"""Agent detection and installed-skill path resolution."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path

from ravel.core.models import Agent
from ravel.runners.agents import AGENT_SPECS, AgentSpec

logger = logging.getLogger(__name__)

# Detection priority when no agent is requested
AGENT_PRIORITY: tuple[Agent, ...] = (Agent.CLAUDE, Agent.CURSOR, Agent.GEMINI)

# Install layout per agent, relative to the home directory.
# Placeholders: {bundle} = installed skill name, {subdir} = plan subdirectory.
RULE_LAYOUTS: dict[Agent, tuple[str, ...]] = {
    Agent.CLAUDE: (".claude", "skills", "{bundle}", "rules"),
    Agent.CURSOR: (".cursor", "ravel_rules", "{subdir}", "cursor_rules"),
    Agent.GEMINI: (".gemini", "antigravity", "ravel_rules", "{subdir}", "cursor_rules"),
}

TEMPLATE_LAYOUTS: dict[Agent, tuple[str, ...]] = {
    Agent.CLAUDE: (".claude", "skills", "{bundle}", "templates"),
    Agent.CURSOR: (".cursor", "ravel_rules", "{subdir}", "cursor_rules", "templates"),
    Agent.GEMINI: (".gemini", "antigravity", "ravel_rules", "{subdir}", "cursor_rules", "templates"),
}

WhichFunc = Callable[[str], str | None]


class AgentResolver:
    """Finds available agent CLIs and where their skills are installed."""

    def __init__(
        self,
        home: Path | None = None,
        which: WhichFunc | None = None,
        specs: dict[Agent, AgentSpec] = AGENT_SPECS,
    ) -> None:
        self.home = home or Path.home()
        self._which = which or shutil.which
        self._specs = specs

    def is_available(self, agent: Agent) -> bool:
        path = self._which(self._specs[agent].binary)
        if path:
            logger.debug(f"{agent.value} found at {path}")
        return path is not None

    def resolve(self, preferred: Agent | None = None) -> Agent | None:
        """Pick an agent: the preferred one if present, else the first found by priority."""
        if preferred is not None:
            return preferred if self.is_available(preferred) else None

        for agent in AGENT_PRIORITY:
            if self.is_available(agent):
                return agent
        return None

    def detect_all(self) -> list[Agent]:
        return [agent for agent in AGENT_PRIORITY if self.is_available(agent)]

    def rule_base_path(self, agent: Agent, bundle_name: str, plan_subdir: str) -> Path:
        return self._layout(RULE_LAYOUTS[agent], bundle_name, plan_subdir)

    def template_path(self, agent: Agent, bundle_name: str, plan_subdir: str, template_file: str) -> Path:
        return self._layout(TEMPLATE_LAYOUTS[agent], bundle_name, plan_subdir) / template_file

    def _layout(self, parts: tuple[str, ...], bundle_name: str, plan_subdir: str) -> Path:
        return self.home.joinpath(*(part.format(bundle=bundle_name, subdir=plan_subdir) for part in parts))

    def rule_extension(self, agent: Agent) -> str:
        return self._specs[agent].rule_extension

    def display_name(self, agent: Agent) -> str:
        return self._specs[agent].display_name

    def models(self, agent: Agent) -> tuple[str, ...]:
        return self._specs[agent].models

    def validate_model(self, agent: Agent, model: str) -> str | None:
        """Return an error message when ``model`` is not valid for the agent."""
        valid = self.models(agent)
        if model in valid:
            return None
        return f'Model "{model}" is not valid for {self.display_name(agent)} CLI.\nValid models: {", ".join(valid)}'

    def verify_installation(self, agent: Agent, rule_base_path: Path, rule_names: list[str]) -> str | None:
        """Check that installed rules exist. Returns a remediation message or None."""
        spec = self._specs[agent]
        if not rule_base_path.is_dir():
            return (
                f"Skills not found at: {rule_base_path}\n"
                f'Run "{spec.install_command}" first to install skills for {spec.display_name}.'
            )

        if not rule_names:
            return None

        first_rule = rule_base_path / f"{rule_names[0]}{spec.rule_extension}"
        if not first_rule.exists():
            return f'Rule file not found: {first_rule}\nSkills may be outdated. Run "ravel update" to reinstall.'

        return None

    def missing_agent_message(self, preferred: Agent | None = None) -> str:
        """Explain how to install an agent when none was found."""
        if preferred is not None:
            target = self._specs[preferred].binary
        else:
            target = " or ".join(self._specs[a].binary for a in AGENT_PRIORITY)
        hints = "\n".join(f"  {self._specs[a].display_name + ':':<8} {self._specs[a].install_hint}" for a in AGENT_PRIORITY)
        return f"No AI CLI found. Please install {target}.\n{hints}"
