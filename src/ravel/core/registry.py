"""Registry of runnable audit bundles."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from ravel.core.models import Bundle

SECURITY_BUNDLE_ID = "security_audit"

DEFAULT_BUNDLES: tuple[Bundle, ...] = (
    Bundle(
        id="flutter_health",
        code="fh",
        name="ravel-fh",
        display_name="Flutter Project Health Audit",
        tech_prefix="flutter",
        plan_path="flutter-plans/flutter_project_health_audit/plan/flutter-health.plan.md",
        rules_dir="flutter-plans/flutter_project_health_audit/cursor_rules",
        template_path="flutter-plans/flutter_project_health_audit/cursor_rules/templates/flutter_report_template.txt",
    ),
    Bundle(
        id="nestjs_health",
        code="nh",
        name="ravel-nh",
        display_name="NestJS Project Health Audit",
        tech_prefix="nestjs",
        plan_path="nestjs-plans/nestjs_project_health_audit/plan/nestjs-health.plan.md",
        rules_dir="nestjs-plans/nestjs_project_health_audit/cursor_rules",
        template_path="nestjs-plans/nestjs_project_health_audit/cursor_rules/templates/nestjs_report_template.txt",
    ),
    Bundle(
        id=SECURITY_BUNDLE_ID,
        code="sa",
        name="ravel-sa",
        display_name="Security Audit",
        tech_prefix="security",
        plan_path="security-plans/security_audit/plan/security.plan.md",
        rules_dir="security-plans/security_audit/cursor_rules",
        template_path="security-plans/security_audit/cursor_rules/templates/security_report_template.txt",
    ),
)


class BundleRegistry:
    """Immutable lookup table of bundles.

    Pass a custom bundle list in tests; production code uses DEFAULT_BUNDLES.
    """

    def __init__(self, bundles: Iterable[Bundle] = DEFAULT_BUNDLES) -> None:
        self._bundles: tuple[Bundle, ...] = tuple(bundles)

    def __iter__(self) -> Iterator[Bundle]:
        return iter(self._bundles)

    def __len__(self) -> int:
        return len(self._bundles)

    @property
    def runnable(self) -> list[Bundle]:
        """Bundles that can be executed with ``ravel run``."""
        return [b for b in self._bundles if b.id.endswith(("_health", "_audit"))]

    def find_by_code(self, code: str) -> Bundle | None:
        for bundle in self.runnable:
            if bundle.code == code:
                return bundle
        return None

    def find_by_id(self, bundle_id: str) -> Bundle | None:
        for bundle in self._bundles:
            if bundle.id == bundle_id:
                return bundle
        return None

    def follow_up_for(self, bundle: Bundle) -> Bundle | None:
        """Security bundle offered after a successful health audit."""
        if not bundle.is_health:
            return None
        return self.find_by_id(SECURITY_BUNDLE_ID)
