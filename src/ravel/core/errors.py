"""Exceptions raised before a run starts."""

from __future__ import annotations


class RavelError(Exception):
    """Base exception for ravel."""


class RunSetupError(RavelError):
    """A run could not be prepared (bad project, missing skills, empty plan)."""

    def __init__(self, message: str, usage: bool = False) -> None:
        super().__init__(message)
        self.usage = usage


class ContentRootError(RavelError):
    """The directory holding the bundle plans could not be found."""
