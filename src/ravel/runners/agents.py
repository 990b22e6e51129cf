"""AI CLI agents: static agent table and one subprocess invoker per agent."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import signal
import sys
from abc import ABC, abstractmethod
from contextlib import suppress
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from ravel.core.models import Agent, ProcessOutcome, TokenUsage

logger = logging.getLogger(__name__)

# Exit code reported when the agent binary cannot be found
EXIT_NOT_FOUND = 127
# Timeout or spawn failure
EXIT_ABNORMAL = -1


class AgentSpec(BaseModel):
    """Static facts about an agent CLI."""

    model_config = ConfigDict(frozen=True)

    binary: str
    display_name: str
    rule_extension: str
    models: tuple[str, ...]
    fallback_model: str | None
    install_command: str
    install_hint: str

    @property
    def default_model(self) -> str:
        return self.models[0]


AGENT_SPECS: dict[Agent, AgentSpec] = {
    Agent.CLAUDE: AgentSpec(
        binary="claude",
        display_name="Claude",
        rule_extension=".md",
        models=("haiku", "sonnet", "opus"),
        fallback_model="haiku",
        install_command="ravel claude",
        install_hint="https://claude.ai/download",
    ),
    Agent.CURSOR: AgentSpec(
        binary="agent",
        display_name="Cursor",
        rule_extension=".md",
        models=(
            "auto",
            "opus-4.6-thinking",
            "opus-4.6",
            "opus-4.5",
            "sonnet-4.5",
            "sonnet-4.5-thinking",
            "composer-1",
            "gpt-5.2",
            "gpt-5.2-high",
            "gpt-5.2-codex",
            "gpt-5.1-codex-max",
            "gemini-3-pro",
            "gemini-3-flash",
            "grok",
        ),
        fallback_model="auto",
        install_command="ravel cursor",
        install_hint="https://docs.cursor.com/cli",
    ),
    Agent.GEMINI: AgentSpec(
        binary="gemini",
        display_name="Gemini",
        rule_extension=".yaml",
        models=("gemini-3-flash", "gemini-2.5-flash", "gemini-2.5-pro", "gemini-3-pro"),
        fallback_model="gemini-2.5-flash",
        install_command="ravel antigravity",
        install_hint="npm install -g @google/gemini-cli",
    ),
}


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0


class AgentInvoker(ABC):
    """Runs one agent CLI as a one-shot, non-interactive subprocess.

    Subclasses own everything agent-specific: argument shape, how a rule file
    is referenced in the prompt, and how usage is read from the JSON output.
    """

    agent: Agent

    def __init__(self, project_root: Path, timeout: int | None = None, command: str | None = None) -> None:
        self.project_root = project_root
        self.timeout = timeout
        self.command = command or AGENT_SPECS[self.agent].binary

    @property
    def spec(self) -> AgentSpec:
        return AGENT_SPECS[self.agent]

    @abstractmethod
    def build_command(self, prompt: str, model: str | None) -> list[str]:
        """Build the argument vector for a single invocation."""

    @abstractmethod
    def extract_usage(self, payload: dict[str, Any]) -> TokenUsage | None:
        """Read token usage from the decoded JSON result."""

    def read_instruction(self, rule_file: Path) -> str:
        return f"Read and follow ALL instructions in {rule_file.as_posix()}"

    def report_instruction(self, rule_file: Path) -> str:
        return f"Read {rule_file.as_posix()} for report generation instructions."

    def parse_usage(self, stdout: str) -> TokenUsage | None:
        """Parse usage from stdout. Any failure yields None."""
        try:
            payload = json.loads(stdout)
            if not isinstance(payload, dict):
                return None
            return self.extract_usage(payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug(f"No usage data in {self.spec.display_name} output: {e}")
            return None

    async def invoke(self, prompt: str, model: str | None) -> ProcessOutcome:
        """Spawn the agent and wait for it to exit."""
        cmd = self.build_command(prompt, model)
        logger.debug(f"Running command: {' '.join(cmd[:6])}...")

        kwargs: dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": self.project_root,
        }
        if sys.platform != "win32":
            kwargs["start_new_session"] = True

        try:
            process = await asyncio.create_subprocess_exec(cmd[0], *cmd[1:], **kwargs)
        except FileNotFoundError:
            return ProcessOutcome(
                exit_code=EXIT_NOT_FOUND,
                stderr=f"{self.spec.display_name} CLI not found: {self.command}",
            )
        except OSError as e:
            return ProcessOutcome(exit_code=EXIT_ABNORMAL, stderr=f"Error spawning {self.command}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            logger.warning(f"Process {process.pid} timed out, killing process tree")
            await _kill_process_tree(process)
            return ProcessOutcome(exit_code=EXIT_ABNORMAL, stderr=f"TIMEOUT after {self.timeout} seconds")
        except asyncio.CancelledError:
            logger.info(f"Cancellation requested, killing process tree for PID {process.pid}")
            await _kill_process_tree(process)
            raise

        return ProcessOutcome(
            exit_code=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


async def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Terminate the agent and anything it spawned."""
    if process.returncode is not None:
        return
    if sys.platform == "win32":
        process.kill()
    else:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            process.kill()
    with suppress(Exception):
        await process.wait()


class ClaudeInvoker(AgentInvoker):
    """Claude Code: ``claude -p <prompt> --output-format json``."""

    agent = Agent.CLAUDE
    allowed_tools = "Read,Bash,Glob,Grep,Write"

    def build_command(self, prompt: str, model: str | None) -> list[str]:
        args = [self.command, "-p", prompt, "--allowedTools", self.allowed_tools, "--output-format", "json"]
        if model:
            args += ["--model", model]
        return args

    def extract_usage(self, payload: dict[str, Any]) -> TokenUsage | None:
        usage = payload.get("usage") or {}
        cost = payload.get("total_cost_usd")
        return TokenUsage(
            input_tokens=_as_int(usage.get("input_tokens")),
            output_tokens=_as_int(usage.get("output_tokens")),
            cache_read_tokens=_as_int(usage.get("cache_read_input_tokens")),
            cache_creation_tokens=_as_int(usage.get("cache_creation_input_tokens")),
            cost_usd=float(cost) if isinstance(cost, int | float) and math.isfinite(cost) else None,
        )


class CursorInvoker(AgentInvoker):
    """Cursor CLI: ``agent --print --output-format json --force <prompt>``."""

    agent = Agent.CURSOR

    def build_command(self, prompt: str, model: str | None) -> list[str]:
        args = [self.command, "--print", "--output-format", "json", "--force"]
        if model:
            args += ["--model", model]
        return [*args, prompt]

    def extract_usage(self, payload: dict[str, Any]) -> TokenUsage | None:
        # Cursor does not report token usage
        return None


class GeminiInvoker(AgentInvoker):
    """Gemini CLI: ``gemini -p <prompt> --yolo -o json``. Rules are YAML files."""

    agent = Agent.GEMINI

    def build_command(self, prompt: str, model: str | None) -> list[str]:
        args = [self.command, "-p", prompt, "--yolo", "-o", "json"]
        if model:
            args += ["--model", model]
        return args

    def read_instruction(self, rule_file: Path) -> str:
        return f"Read {rule_file.as_posix()} and follow ALL instructions in the prompt field"

    def report_instruction(self, rule_file: Path) -> str:
        return f"Read {rule_file.as_posix()} and follow the instructions in the prompt field for report generation."

    def extract_usage(self, payload: dict[str, Any]) -> TokenUsage | None:
        stats = payload.get("stats") or {}
        models = stats.get("models") or {}

        prompt_tokens = 0
        candidate_tokens = 0
        for model_stats in models.values():
            if not isinstance(model_stats, dict):
                continue
            tokens = model_stats.get("tokens") or {}
            prompt_tokens += _as_int(tokens.get("prompt"))
            candidate_tokens += _as_int(tokens.get("candidates"))

        return TokenUsage(input_tokens=prompt_tokens, output_tokens=candidate_tokens)


INVOKERS: dict[Agent, type[AgentInvoker]] = {
    Agent.CLAUDE: ClaudeInvoker,
    Agent.CURSOR: CursorInvoker,
    Agent.GEMINI: GeminiInvoker,
}


def create_invoker(agent: Agent, project_root: Path, timeout: int | None = None) -> AgentInvoker:
    """Build the invoker for an agent."""
    return INVOKERS[agent](project_root, timeout=timeout)
