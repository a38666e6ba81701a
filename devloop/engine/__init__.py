"""Execution engine: command registry, phase hooks, recovery and PRD-set validation."""
