"""Engine configuration resolved from arguments and environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from devloop.engine.config_validation import (
    require_positive_int,
    require_positive_number,
    validate_choice,
)
from devloop.engine.frameworks import framework_catalog

DEVLOOP_PROJECT_ROOT_ENV = "DEVLOOP_PROJECT_ROOT"
DEVLOOP_DEFAULT_TIMEOUT_ENV = "DEVLOOP_DEFAULT_TIMEOUT"
DEVLOOP_MAX_OUTPUT_BYTES_ENV = "DEVLOOP_MAX_OUTPUT_BYTES"
DEVLOOP_DEBUG_ENV = "DEVLOOP_DEBUG"
DEVLOOP_EVENTS_FILE_ENV = "DEVLOOP_EVENTS_FILE"
DEVLOOP_FRAMEWORK_ENV = "DEVLOOP_FRAMEWORK"

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024

_TRUTHY = {"1", "true", "yes", "on"}


class EngineConfigError(ValueError):
    """Raised when engine configuration values are invalid."""


def validate_framework(value: str) -> str:
    """Validate framework id against the plugin catalog."""
    return validate_choice(value, "framework", framework_catalog())


@dataclass(frozen=True)
class EngineConfig:
    """Settings shared by the executor, hook runner and recovery system."""

    project_root: Path
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    debug: bool = False
    events_path: Path | None = None
    framework: str = "generic"

    def __post_init__(self) -> None:
        try:
            require_positive_number(self.default_timeout_seconds, "default_timeout_seconds")
            require_positive_int(self.max_output_bytes, "max_output_bytes")
            validate_framework(self.framework)
        except ValueError as exc:
            raise EngineConfigError(str(exc)) from exc

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: object,
    ) -> EngineConfig:
        """Build config from ``DEVLOOP_*`` variables; keyword overrides win.

        Overrides whose value is ``None`` are ignored so CLI options can be
        passed through unconditionally.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {
            "project_root": Path(env.get(DEVLOOP_PROJECT_ROOT_ENV) or Path.cwd()),
            "debug": env.get(DEVLOOP_DEBUG_ENV, "").strip().lower() in _TRUTHY,
            "framework": env.get(DEVLOOP_FRAMEWORK_ENV) or "generic",
        }
        timeout_raw = env.get(DEVLOOP_DEFAULT_TIMEOUT_ENV)
        if timeout_raw:
            values["default_timeout_seconds"] = _parse_number(
                timeout_raw, DEVLOOP_DEFAULT_TIMEOUT_ENV, float
            )
        output_raw = env.get(DEVLOOP_MAX_OUTPUT_BYTES_ENV)
        if output_raw:
            values["max_output_bytes"] = _parse_number(
                output_raw, DEVLOOP_MAX_OUTPUT_BYTES_ENV, int
            )
        events_raw = env.get(DEVLOOP_EVENTS_FILE_ENV)
        if events_raw:
            values["events_path"] = Path(events_raw)
        values.update({key: value for key, value in overrides.items() if value is not None})
        project_root = Path(str(values.pop("project_root"))).expanduser().resolve()
        return cls(project_root=project_root, **values)  # type: ignore[arg-type]


def _parse_number(raw: str, name: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(raw.strip())
    except ValueError as exc:
        raise EngineConfigError(f"{name} must be numeric, got '{raw}'.") from exc
