"""Shared configuration validation helpers."""

from __future__ import annotations

from collections.abc import Iterable

HOOK_TYPES = {"cli_command", "shell", "callback"}

COMMAND_PURPOSES = {
    "cache-clear",
    "module-enable",
    "module-disable",
    "service-check",
    "config-export",
    "config-import",
    "database-query",
    "code-check",
    "test-run",
    "scaffold",
    "entity-check",
    "health-check",
}


def require_positive_int(value: int, field_name: str) -> int:
    """Validate a positive integer input and return it."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer.")
    if value <= 0:
        raise ValueError(f"{field_name} must be greater than zero.")
    return value


def require_positive_number(value: float, field_name: str) -> float:
    """Validate a positive int/float input and return it as float."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number.")
    if value <= 0:
        raise ValueError(f"{field_name} must be greater than zero.")
    return float(value)


def validate_choice(value: str, field_name: str, allowed: Iterable[str]) -> str:
    """Validate that a string value is within a set of allowed options."""
    options = set(allowed)
    if value not in options:
        rendered = ", ".join(sorted(options))
        raise ValueError(f"{field_name} must be one of: {rendered}.")
    return value


def validate_hook_type(value: str) -> str:
    """Validate phase hook type."""
    return validate_choice(value, "type", HOOK_TYPES)


def validate_command_purpose(value: str) -> str:
    """Validate framework command purpose category."""
    return validate_choice(value, "purpose", COMMAND_PURPOSES)
