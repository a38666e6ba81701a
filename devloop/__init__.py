"""Agentic execution and recovery engine for PRD-driven development loops."""

__version__ = "0.4.0"
