"""Project-type validation before an audit run."""

from __future__ import annotations

from pathlib import Path

# Technology prefix -> manifest file that marks a project of that type
PROJECT_MARKERS: dict[str, str] = {
    "flutter": "pubspec.yaml",
    "dart": "pubspec.yaml",
    "nestjs": "package.json",
    "nextjs": "package.json",
    "react": "package.json",
    "node": "package.json",
    "go": "go.mod",
    "rust": "Cargo.toml",
    "python": "pyproject.toml",
}


def validate_project(tech_prefix: str, project_root: Path) -> str | None:
    """Check that ``project_root`` looks like a project of ``tech_prefix``.

    Returns:
        None when the project matches (or the technology has no marker),
        otherwise a message explaining what is missing.
    """
    if tech_prefix == "nestjs":
        return _validate_nestjs(project_root)

    marker = PROJECT_MARKERS.get(tech_prefix)
    if marker is None:
        return None
    if not (project_root / marker).exists():
        return f"No {marker} found in {project_root}.\nPlease run this command from a {tech_prefix} project root."
    return None


def _validate_nestjs(project_root: Path) -> str | None:
    package_json = project_root / "package.json"
    if not package_json.exists():
        return f"No package.json found in {project_root}.\nPlease run this command from a NestJS project root."
    if "@nestjs/core" not in package_json.read_text(encoding="utf-8"):
        return "package.json does not contain @nestjs/core dependency.\nThis does not appear to be a NestJS project."
    return None
