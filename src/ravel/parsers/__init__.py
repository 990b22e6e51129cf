"""Plan file parsers."""

from ravel.parsers.plan import PlanParser, parse_plan

__all__ = ["PlanParser", "parse_plan"]
