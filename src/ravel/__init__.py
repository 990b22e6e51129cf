"""Ravel: run audit bundles step by step with AI command-line agents."""

__version__ = "0.1.0"
