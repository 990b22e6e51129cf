"""Flutter pre-flight: FVM, Flutter version, pub get, build_runner, tests."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ravel.preflight.base import Phase, PhaseReport, PreflightProcedure
from ravel.preflight.parsing import parse_compact_test_output, parse_lcov
from ravel.preflight.tools import child_label, discover_children, read_project_file

logger = logging.getLogger(__name__)

MONOREPO_PARENTS = ("packages", "apps")
MANIFEST = "pubspec.yaml"
LCOV_PATH = Path("coverage") / "lcov.info"


def read_flutter_version(project_dir: Path) -> str | None:
    """Read the pinned Flutter version from ``.fvmrc`` or ``.fvm/fvm_config.json``."""
    candidates = (
        (project_dir / ".fvmrc", ("flutter",)),
        (project_dir / ".fvm" / "fvm_config.json", ("flutter", "flutterSdkVersion")),
    )
    for path, keys in candidates:
        if not path.is_file():
            continue
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable {path}: {e}")
            continue
        if not isinstance(data, dict):
            continue
        for key in keys:
            version = data.get(key)
            if isinstance(version, str) and version:
                return version
    return None


class FlutterPreflight(PreflightProcedure):
    """Pre-flight for Flutter projects managed with FVM."""

    prefix = "flutter"

    def phases(self) -> list[Phase]:
        return [self.align_version, self.install_dependencies, self.run_tests]

    async def check_tools(self, project_dir: Path) -> PhaseReport | None:
        report = self.new_report("tool_installer", "Flutter Tool Installer")

        version = await self.tools.run(["fvm", "--version"], project_dir)
        if version.ok:
            report.check(True, f"FVM installed ({version.stdout.strip()})")
            return report

        install = await self.tools.run(["dart", "pub", "global", "activate", "fvm"], project_dir)
        report.record(install, "FVM installed via dart pub global activate fvm")
        return report

    async def align_version(self, project_dir: Path) -> PhaseReport | None:
        required = read_flutter_version(project_dir)
        if required is None:
            logger.warning("No .fvmrc or .fvm/fvm_config.json found. Skipping version alignment.")
            return None

        report = self.new_report("version_alignment", "Flutter Version Alignment")
        report.note(f"Required Flutter version: {required}")

        install = await self.tools.run(["fvm", "install", required], project_dir)
        if report.record(install, f"fvm install {required}"):
            result = await self.tools.run(["fvm", "global", required], project_dir)
            report.record(result, f"fvm global {required}")
        return report

    async def install_dependencies(self, project_dir: Path) -> PhaseReport | None:
        report = self.new_report("dependency_installer", "Flutter Dependency Installer")
        targets = [("root", project_dir)]
        targets += [(child_label(child), child) for child in discover_children(project_dir, MONOREPO_PARENTS, MANIFEST)]

        for label, directory in targets:
            result = await self.tools.run(["fvm", "flutter", "pub", "get"], directory)
            report.record(result, f"flutter pub get ({label})")

        for label, directory in targets:
            pubspec = read_project_file(directory / MANIFEST)
            if pubspec is None or "build_runner" not in pubspec:
                continue
            result = await self.tools.run(
                ["fvm", "dart", "run", "build_runner", "build", "--delete-conflicting-outputs"],
                directory,
            )
            report.record(result, f"build_runner ({label})")

        return report

    async def run_tests(self, project_dir: Path) -> PhaseReport | None:
        report = self.new_report("test_coverage", "Flutter Test Coverage")
        targets = [("root", project_dir)] if (project_dir / "test").is_dir() else []
        targets += [
            (child_label(child), child)
            for child in discover_children(project_dir, MONOREPO_PARENTS, MANIFEST)
            if (child / "test").is_dir()
        ]
        if not targets:
            report.check(False, "No test/ directory found")
            return report

        for label, directory in targets:
            result = await self.tools.run(
                ["fvm", "flutter", "test", "--coverage", "--reporter", "compact"],
                directory,
            )
            report.record(result, f"flutter test --coverage ({label})")
            report.add_test_summary(label, parse_compact_test_output(result.output))

            lcov = read_project_file(directory / LCOV_PATH)
            coverage = parse_lcov(lcov) if lcov is not None else None
            report.add_coverage(label, coverage)

        return report
