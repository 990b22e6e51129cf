"""Loading plan documents from the bundle content tree."""

from __future__ import annotations

import logging
from pathlib import Path

from ravel.core.errors import ContentRootError
from ravel.core.models import Bundle

logger = logging.getLogger(__name__)

# Any of these marks a directory as the content root
CONTENT_MARKERS = ("flutter-plans", "nestjs-plans", "security-plans")


def _is_content_root(path: Path) -> bool:
    return any((path / marker).is_dir() for marker in CONTENT_MARKERS)


def find_content_root(configured: Path | None = None, start: Path | None = None) -> Path:
    """Locate the directory holding the bundle plans.

    Checks the configured path first, then walks up from ``start`` (defaults to
    the current directory).

    Raises:
        ContentRootError: If no candidate contains a plans directory.
    """
    if configured is not None:
        if _is_content_root(configured):
            return configured.resolve()
        raise ContentRootError(f"Configured content root has no plans directory: {configured}")

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if _is_content_root(candidate):
            logger.debug(f"Content root found at {candidate}")
            return candidate

    raise ContentRootError(
        "Cannot find the bundle content root (flutter-plans/, nestjs-plans/ or security-plans/).\n"
        "Set content_root in .ravel/config.yaml or export RAVEL_ROOT=/path/to/content."
    )


class ContentLoader:
    """Reads plan documents relative to a content root."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def plan_file(self, bundle: Bundle) -> Path:
        return self.root / bundle.plan_path

    def load_plan(self, bundle: Bundle) -> str:
        """Read a bundle's plan, dropping a leading HTML comment line.

        Raises:
            FileNotFoundError: If the plan file does not exist.
        """
        content = self.plan_file(bundle).read_text(encoding="utf-8")

        # Plans may carry an <!-- uuid --> marker on the first line
        if content.startswith("<!--"):
            _, _, content = content.partition("\n")

        return content.lstrip()
