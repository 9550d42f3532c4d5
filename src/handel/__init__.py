"""Handel deployment orchestrator."""

__version__ = "1.0.0"
