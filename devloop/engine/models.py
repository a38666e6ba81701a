"""Data models for command execution, phase hooks and recovery."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from devloop.engine.config_validation import (
    require_positive_int,
    require_positive_number,
    validate_command_purpose,
    validate_hook_type,
)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

SuggestedAction = Literal["retry", "skip", "escalate"]
HookEvent = Literal["onPhaseStart", "onPhaseComplete", "onTaskComplete"]


def _require_string(value: Any, field_name: str) -> str:
    """Validate and return a non-empty string."""
    if not isinstance(value, str):
        raise ValueError(f"Expected '{field_name}' to be a string.")
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"Expected '{field_name}' to be non-empty.")
    return cleaned


def _optional_string(value: Any, field_name: str) -> str | None:
    """Validate an optional string, returning None when absent."""
    if value is None:
        return None
    return _require_string(value, field_name)


def _require_string_list(value: Any, field_name: str) -> list[str]:
    """Validate a list of non-empty strings."""
    if not isinstance(value, list):
        raise ValueError(f"Expected '{field_name}' to be a list.")
    return [_require_string(item, f"{field_name}[{index}]") for index, item in enumerate(value)]


def _require_bool(value: Any, field_name: str, *, default: bool) -> bool:
    """Validate an optional boolean flag."""
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"Expected '{field_name}' to be a boolean.")
    return value


def _string_mapping(value: Any, field_name: str) -> dict[str, str]:
    """Validate a mapping of scalar values and coerce values to strings."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected '{field_name}' to be an object.")
    output: dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, (dict, list)) or item is None:
            raise ValueError(f"Expected '{field_name}.{key}' to be a scalar value.")
        if isinstance(item, bool):
            output[str(key)] = "true" if item else "false"
        else:
            output[str(key)] = str(item)
    return output


def template_placeholders(template: str) -> list[str]:
    """Return distinct placeholder names in template, in first-seen order."""
    seen: list[str] = []
    for name in PLACEHOLDER_PATTERN.findall(template):
        if name not in seen:
            seen.append(name)
    return seen


@dataclass(frozen=True)
class CommandDefinition:
    """A named framework CLI command template."""

    name: str
    template: str
    purpose: str
    description: str = ""
    placeholders: tuple[str, ...] = ()
    example: str | None = None
    timeout_seconds: float | None = None
    idempotent: bool = False
    requires_confirmation: bool = False

    @property
    def required_arguments(self) -> list[str]:
        """Placeholder names that must be supplied at execution time."""
        return template_placeholders(self.template)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CommandDefinition:
        """Create a command definition from plugin or config data.

        Accepts ``timeoutMs`` (milliseconds) as an alternative to
        ``timeout_seconds`` so that manifests written with millisecond
        timeouts load unchanged.
        """
        template = data.get("template", data.get("command"))
        timeout_raw = data.get("timeout_seconds")
        if timeout_raw is None and data.get("timeoutMs") is not None:
            timeout_ms = require_positive_number(data["timeoutMs"], "timeoutMs")
            timeout_raw = timeout_ms / 1000.0
        timeout = (
            require_positive_number(timeout_raw, "timeout_seconds")
            if timeout_raw is not None
            else None
        )
        placeholders_raw = data.get("placeholders")
        placeholders = (
            tuple(_require_string_list(placeholders_raw, "placeholders"))
            if placeholders_raw is not None
            else ()
        )
        return cls(
            name=_require_string(data.get("name"), "name"),
            template=_require_string(template, "template"),
            purpose=validate_command_purpose(_require_string(data.get("purpose"), "purpose")),
            description=str(data.get("description") or ""),
            placeholders=placeholders,
            example=_optional_string(data.get("example"), "example"),
            timeout_seconds=timeout,
            idempotent=_require_bool(data.get("idempotent"), "idempotent", default=False),
            requires_confirmation=_require_bool(
                data.get("requiresConfirmation", data.get("requires_confirmation")),
                "requiresConfirmation",
                default=False,
            ),
        )

    def to_dict(self) -> dict[str, object]:
        """Serialize command definition for JSON output."""
        return {
            "name": self.name,
            "template": self.template,
            "purpose": self.purpose,
            "description": self.description,
            "placeholders": list(self.placeholders),
            "example": self.example,
            "timeout_seconds": self.timeout_seconds,
            "idempotent": self.idempotent,
            "requires_confirmation": self.requires_confirmation,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one command invocation."""

    success: bool
    output: str
    command: str
    command_name: str
    duration_seconds: float
    error: str | None = None
    exit_code: int | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize execution result for JSON output."""
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "command": self.command,
            "command_name": self.command_name,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class PhaseHook:
    """A side-effecting action bound to a phase lifecycle transition."""

    type: str
    command: str | None = None
    cli_command: str | None = None
    args: dict[str, str] = field(default_factory=dict)
    description: str | None = None
    continue_on_error: bool = False

    @property
    def label(self) -> str:
        """Human-readable label used in logs and results."""
        if self.description:
            return self.description
        return f"{self.type}: {self.cli_command or self.command}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PhaseHook:
        """Create a hook from a frontmatter entry."""
        if not isinstance(data, Mapping):
            raise ValueError("Expected hook entry to be an object.")
        hook_type = validate_hook_type(_require_string(data.get("type"), "type"))
        return cls(
            type=hook_type,
            command=_optional_string(data.get("command"), "command"),
            cli_command=_optional_string(data.get("cliCommand"), "cliCommand"),
            args=_string_mapping(data.get("args"), "args"),
            description=_optional_string(data.get("description"), "description"),
            continue_on_error=_require_bool(
                data.get("continueOnError"), "continueOnError", default=False
            ),
        )


@dataclass(frozen=True)
class PhaseHooks:
    """Hook lists declared in one phase file.

    Entries are kept raw until execution so that one malformed hook is
    reported in sequence, with its continue-on-error flag honored, instead of
    invalidating the whole file.
    """

    on_phase_start: tuple[Any, ...] = ()
    on_phase_complete: tuple[Any, ...] = ()
    on_task_complete: tuple[Any, ...] = ()

    def for_event(self, event: HookEvent) -> tuple[Any, ...]:
        """Return the hook entries registered for a lifecycle event."""
        if event == "onPhaseStart":
            return self.on_phase_start
        if event == "onPhaseComplete":
            return self.on_phase_complete
        return self.on_task_complete

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PhaseHooks:
        """Build hook lists from the ``hooks`` frontmatter mapping."""

        def _entries(key: str) -> tuple[Any, ...]:
            value = data.get(key)
            if value is None:
                return ()
            if not isinstance(value, list):
                raise ValueError(f"Expected 'hooks.{key}' to be a list.")
            return tuple(value)

        return cls(
            on_phase_start=_entries("onPhaseStart"),
            on_phase_complete=_entries("onPhaseComplete"),
            on_task_complete=_entries("onTaskComplete"),
        )


@dataclass(frozen=True)
class HookResult:
    """Outcome of one executed hook."""

    success: bool
    hook_event: str
    hook_index: int
    hook_type: str
    description: str
    duration_seconds: float
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize hook result for JSON output."""
        return {
            "success": self.success,
            "hook_event": self.hook_event,
            "hook_index": self.hook_index,
            "hook_type": self.hook_type,
            "description": self.description,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


@dataclass(frozen=True)
class RecoveryStrategy:
    """Maps an error pattern to a bounded remediation attempt."""

    name: str
    pattern: re.Pattern[str] | str
    commands: tuple[str, ...]
    max_attempts: int
    retry_after_recovery: bool
    extract_module: re.Pattern[str] | None = None

    def __post_init__(self) -> None:
        _require_string(self.name, "name")
        require_positive_int(self.max_attempts, "max_attempts")

    def matches(self, text: str) -> bool:
        """Return whether text matches this strategy's pattern, ignoring case."""
        if isinstance(self.pattern, str):
            return self.pattern.lower() in text.lower()
        if self.pattern.flags & re.IGNORECASE:
            return self.pattern.search(text) is not None
        return re.search(self.pattern.pattern, text, self.pattern.flags | re.IGNORECASE) is not None

    def module_from(self, text: str) -> str | None:
        """Extract a module name from error text using ``extract_module``."""
        if self.extract_module is None:
            return None
        match = self.extract_module.search(text)
        if match is None or not match.groups() or not match.group(1):
            return None
        return match.group(1)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RecoveryStrategy:
        """Create a strategy from config data; patterns compile case-insensitively."""
        extract_raw = _optional_string(data.get("extractModule"), "extractModule")
        return cls(
            name=_require_string(data.get("name"), "name"),
            pattern=re.compile(_require_string(data.get("pattern"), "pattern"), re.IGNORECASE),
            commands=tuple(_require_string_list(data.get("commands", []), "commands")),
            max_attempts=require_positive_int(data.get("maxAttempts", 1), "maxAttempts"),
            retry_after_recovery=_require_bool(
                data.get("retryAfterRecovery"), "retryAfterRecovery", default=True
            ),
            extract_module=re.compile(extract_raw, re.IGNORECASE) if extract_raw else None,
        )


@dataclass
class RecoveryResult:
    """Outcome of one recovery call."""

    attempted: bool = False
    success: bool = False
    strategy: str | None = None
    commands_executed: list[ExecutionResult] = field(default_factory=list)
    error: str | None = None
    suggested_action: SuggestedAction | None = None
    ceiling_reached: bool = False

    def to_dict(self) -> dict[str, object]:
        """Serialize recovery result for JSON output."""
        return {
            "attempted": self.attempted,
            "success": self.success,
            "strategy": self.strategy,
            "commands_executed": [item.to_dict() for item in self.commands_executed],
            "error": self.error,
            "suggested_action": self.suggested_action,
            "ceiling_reached": self.ceiling_reached,
        }
