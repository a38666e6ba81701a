"""Tests for engine configuration and validation helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from devloop.engine.config import (
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
    EngineConfig,
    EngineConfigError,
)
from devloop.engine.config_validation import (
    require_positive_int,
    require_positive_number,
    validate_command_purpose,
    validate_hook_type,
)


def test_from_env_defaults(tmp_path: Path) -> None:
    config = EngineConfig.from_env({}, project_root=tmp_path)

    assert config.project_root == tmp_path.resolve()
    assert config.default_timeout_seconds == DEFAULT_TIMEOUT_SECONDS
    assert config.max_output_bytes == DEFAULT_MAX_OUTPUT_BYTES == 10 * 1024 * 1024
    assert config.debug is False
    assert config.events_path is None
    assert config.framework == "generic"


def test_from_env_reads_variables(tmp_path: Path) -> None:
    config = EngineConfig.from_env(
        {
            "DEVLOOP_PROJECT_ROOT": str(tmp_path),
            "DEVLOOP_DEFAULT_TIMEOUT": "12.5",
            "DEVLOOP_MAX_OUTPUT_BYTES": "2048",
            "DEVLOOP_DEBUG": "yes",
            "DEVLOOP_EVENTS_FILE": str(tmp_path / "events.jsonl"),
            "DEVLOOP_FRAMEWORK": "drupal",
        }
    )

    assert config.project_root == tmp_path.resolve()
    assert config.default_timeout_seconds == 12.5
    assert config.max_output_bytes == 2048
    assert config.debug is True
    assert config.events_path == tmp_path / "events.jsonl"
    assert config.framework == "drupal"


def test_overrides_win_and_none_is_ignored(tmp_path: Path) -> None:
    config = EngineConfig.from_env(
        {"DEVLOOP_FRAMEWORK": "drupal", "DEVLOOP_PROJECT_ROOT": str(tmp_path)},
        framework="react",
        events_path=None,
    )

    assert config.framework == "react"


def test_from_env_uses_process_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("DEVLOOP_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("DEVLOOP_FRAMEWORK", "django")

    config = EngineConfig.from_env()

    assert config.framework == "django"
    assert config.project_root == tmp_path.resolve()


@pytest.mark.parametrize(
    "environ",
    [
        {"DEVLOOP_DEFAULT_TIMEOUT": "soon"},
        {"DEVLOOP_DEFAULT_TIMEOUT": "0"},
        {"DEVLOOP_MAX_OUTPUT_BYTES": "-1"},
        {"DEVLOOP_FRAMEWORK": "rails"},
    ],
)
def test_invalid_values_raise_config_error(tmp_path: Path, environ: dict[str, str]) -> None:
    with pytest.raises(EngineConfigError):
        EngineConfig.from_env(environ, project_root=tmp_path)


def test_validation_helpers() -> None:
    assert require_positive_int(3, "count") == 3
    assert require_positive_number(2, "seconds") == 2.0
    assert validate_hook_type("shell") == "shell"
    assert validate_command_purpose("cache-clear") == "cache-clear"
    with pytest.raises(ValueError):
        require_positive_int(True, "count")
    with pytest.raises(ValueError):
        require_positive_number(-0.5, "seconds")
    with pytest.raises(ValueError, match="type must be one of"):
        validate_hook_type("webhook")
