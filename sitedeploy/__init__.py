"""Deployment job orchestrator for the statically generated site."""

__version__ = "1.0.0"
