"""NestJS pre-flight: Node.js, nvm, package install, Jest coverage."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ravel.preflight.base import Phase, PhaseReport, PreflightProcedure
from ravel.preflight.parsing import parse_jest_output, parse_lcov
from ravel.preflight.tools import child_label, discover_children, read_project_file

logger = logging.getLogger(__name__)

MONOREPO_PARENTS = ("apps", "packages", "libs")
MANIFEST = "package.json"
LCOV_PATH = Path("coverage") / "lcov.info"
COVERAGE_SCRIPT = "test:cov"

# nvm is a shell function and has to be sourced first
NVM_USE = 'export NVM_DIR="$HOME/.nvm" && [ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh" && nvm use {version}'


def read_node_version(project_dir: Path) -> str | None:
    """Read the pinned Node.js version from ``.nvmrc`` or ``.node-version``."""
    for name in (".nvmrc", ".node-version"):
        text = read_project_file(project_dir / name)
        if text and text.strip():
            return text.strip()
    return None


def detect_package_manager(project_dir: Path) -> str:
    if (project_dir / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (project_dir / "yarn.lock").exists():
        return "yarn"
    return "npm"


def has_script(project_dir: Path, script: str) -> bool:
    """Check whether package.json declares ``script``."""
    package_json = project_dir / MANIFEST
    if not package_json.is_file():
        return False
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.debug(f"Invalid JSON in {package_json}")
        return False
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return isinstance(scripts, dict) and script in scripts


class NestjsPreflight(PreflightProcedure):
    """Pre-flight for NestJS (Node.js) projects."""

    prefix = "nestjs"

    def phases(self) -> list[Phase]:
        return [self.align_version, self.install_dependencies, self.run_tests]

    async def check_tools(self, project_dir: Path) -> PhaseReport | None:
        report = self.new_report("tool_installer", "NestJS Tool Installer")
        node = await self.tools.run(["node", "--version"], project_dir)
        report.check(node.ok, f"Node.js {node.stdout.strip()}" if node.ok else "Node.js not found")

        package_manager = detect_package_manager(project_dir)
        pm = await self.tools.run([package_manager, "--version"], project_dir)
        report.record(pm, f"{package_manager} {pm.stdout.strip()}".rstrip())
        return report

    async def align_version(self, project_dir: Path) -> PhaseReport | None:
        required = read_node_version(project_dir)
        if required is None:
            logger.warning("No .nvmrc or .node-version found. Skipping version alignment.")
            return None

        report = self.new_report("version_alignment", "NestJS Version Alignment")
        report.note(f"Required Node.js version: {required}")
        result = await self.tools.run(["bash", "-c", NVM_USE.format(version=required)], project_dir)
        report.record(result, f"nvm use {required}")
        return report

    async def install_dependencies(self, project_dir: Path) -> PhaseReport | None:
        report = self.new_report("dependency_installer", "NestJS Dependency Installer")
        package_manager = detect_package_manager(project_dir)
        report.note(f"Package manager: {package_manager}")

        targets = [("root", project_dir)]
        targets += [(child_label(child), child) for child in discover_children(project_dir, MONOREPO_PARENTS, MANIFEST)]
        for label, directory in targets:
            result = await self.tools.run([package_manager, "install"], directory)
            report.record(result, f"{package_manager} install ({label})")
        return report

    async def run_tests(self, project_dir: Path) -> PhaseReport | None:
        package_manager = detect_package_manager(project_dir)
        targets = [("root", project_dir)] if has_script(project_dir, COVERAGE_SCRIPT) else []
        targets += [
            (child_label(child), child)
            for child in discover_children(project_dir, MONOREPO_PARENTS, MANIFEST)
            if has_script(child, COVERAGE_SCRIPT)
        ]
        if not targets:
            logger.warning(f'No "{COVERAGE_SCRIPT}" script found. Skipping test coverage.')
            return None

        report = self.new_report("test_coverage", "NestJS Test Coverage")
        for label, directory in targets:
            result = await self.tools.run([package_manager, "run", COVERAGE_SCRIPT], directory)
            report.record(result, f"{package_manager} run {COVERAGE_SCRIPT} ({label})")
            report.add_test_summary(label, parse_jest_output(result.output))

            lcov = read_project_file(directory / LCOV_PATH)
            coverage = parse_lcov(lcov) if lcov is not None else None
            report.add_coverage(label, coverage)

        return report
