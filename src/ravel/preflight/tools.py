"""Running external tooling during pre-flight."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127


@dataclass
class ToolResult:
    """Result of a single tool invocation."""

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr (test runners split their summary across both)."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout


class ToolRunner:
    """Runs one external command and never raises.

    A missing binary, a timeout or a non-zero exit all come back as a
    ToolResult so a phase can record the failure and keep going.
    """

    def __init__(self, timeout: int = 1800) -> None:
        self.timeout = timeout

    async def run(self, args: list[str], cwd: Path) -> ToolResult:
        logger.debug(f"pre-flight: {' '.join(args)} (cwd={cwd})")
        try:
            process = await asyncio.create_subprocess_exec(
                args[0],
                *args[1:],
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError:
            return ToolResult(args=args, exit_code=EXIT_NOT_FOUND, stderr=f"{args[0]}: command not found")
        except OSError as e:
            return ToolResult(args=args, exit_code=-1, stderr=f"Error executing {args[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult(args=args, exit_code=-1, stderr=f"TIMEOUT after {self.timeout} seconds")

        return ToolResult(
            args=args,
            exit_code=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


def discover_children(project_dir: Path, parents: tuple[str, ...], manifest: str) -> list[Path]:
    """Find monorepo members: ``<parent>/<child>/`` directories holding ``manifest``."""
    children: list[Path] = []
    for parent in parents:
        parent_dir = project_dir / parent
        if not parent_dir.is_dir():
            continue
        for entry in sorted(parent_dir.iterdir()):
            if entry.is_dir() and (entry / manifest).is_file():
                children.append(entry)
    return children


def child_label(path: Path) -> str:
    """``apps/api`` style label for a monorepo member."""
    return f"{path.parent.name}/{path.name}"


def read_project_file(path: Path) -> str | None:
    """Read a project file, replacing undecodable bytes. None if missing or unreadable."""
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return None
