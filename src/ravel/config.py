"""Configuration management for ravel."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

CONTENT_ROOT_ENV = "RAVEL_ROOT"


class Config(BaseModel):
    """Ravel configuration.

    Fallback settings:
        fallback_model: Model retried once after a quota failure. ``None`` uses the
            agent's cheapest model, an empty string disables the retry.
    """

    agent: Literal["claude", "cursor", "gemini"] | None = Field(
        default=None,
        description="Preferred AI CLI (auto-detected when unset)",
    )
    model: str | None = Field(default=None, description="Model passed to the AI CLI via --model")
    fallback_model: str | None = Field(
        default=None,
        description="Model to retry with on quota errors; empty string disables fallback",
    )
    preflight: bool = Field(default=True, description="Run deterministic pre-flight before AI steps")
    validate_project: bool = Field(default=True, description="Check the project type before running")
    reports_dir: str = Field(default="reports", description="Report directory, relative to the project root")
    artifacts_subdir: str = Field(default=".artifacts", description="Artifact directory inside reports_dir")
    content_root: Path | None = Field(
        default=None,
        description=f"Directory holding the bundle plans (falls back to ${CONTENT_ROOT_ENV})",
    )
    step_timeout: int | None = Field(
        default=None,
        description="Per-step agent timeout in seconds (no timeout when unset)",
    )

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file or use defaults."""
        if config_path is None:
            # Look for config in .ravel/config.yaml
            config_path = Path(".ravel/config.yaml")

        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    def resolved_content_root(self) -> Path | None:
        """Return the configured content root, honouring the environment override."""
        if self.content_root is not None:
            return self.content_root
        env_root = os.environ.get(CONTENT_ROOT_ENV)
        return Path(env_root) if env_root else None

    def artifacts_dir(self, project_root: Path) -> Path:
        """Directory where per-step artifacts are written."""
        return project_root / self.reports_dir / self.artifacts_subdir

    def report_path(self, project_root: Path, report_file: str) -> Path:
        """Path of the final report for a bundle."""
        return project_root / self.reports_dir / report_file


def get_ravel_dir(project_root: Path | None = None) -> Path:
    """Get the .ravel directory, creating if needed."""
    if project_root is None:
        project_root = Path.cwd()
    ravel_dir = project_root / ".ravel"
    ravel_dir.mkdir(parents=True, exist_ok=True)
    return ravel_dir
