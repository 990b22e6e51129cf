"""Deterministic pre-flight work that substitutes for AI steps."""

from ravel.preflight.base import CheckLine, PhaseReport, PreflightProcedure
from ravel.preflight.flutter import FlutterPreflight
from ravel.preflight.nestjs import NestjsPreflight
from ravel.preflight.runner import PreflightRunner
from ravel.preflight.tools import ToolResult, ToolRunner

__all__ = [
    "CheckLine",
    "FlutterPreflight",
    "NestjsPreflight",
    "PhaseReport",
    "PreflightProcedure",
    "PreflightRunner",
    "ToolResult",
    "ToolRunner",
]
