"""Tests for the command registry and subprocess executor."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import pytest

from devloop.engine.config import EngineConfig
from devloop.engine.events import EventStream
from devloop.engine.executor import (
    CommandExecutor,
    classify_error,
    run_process,
    substitute_placeholders,
    unresolved_placeholders,
)
from devloop.engine.models import CommandDefinition


def _command(
    name: str, template: str, purpose: str = "health-check", **extra: object
) -> CommandDefinition:
    return CommandDefinition.from_dict(
        {"name": name, "template": template, "purpose": purpose, **extra}
    )


def _executor(tmp_path: Path, *commands: CommandDefinition, **kwargs: object) -> CommandExecutor:
    executor = CommandExecutor(tmp_path, **kwargs)  # type: ignore[arg-type]
    executor.register_commands(commands)
    return executor


def test_execute_substitutes_every_placeholder(tmp_path: Path) -> None:
    executor = _executor(tmp_path, _command("greet", "echo {greeting} {name} {name}"))

    result = executor.execute("greet", {"greeting": "hello", "name": "world"})

    assert result.success
    assert result.output == "hello world world"
    assert result.command == "echo hello world world"
    assert result.command_name == "greet"
    assert result.exit_code == 0


@pytest.mark.parametrize("omitted", ["a", "b", "c"])
def test_execute_names_exactly_the_missing_placeholder(tmp_path: Path, omitted: str) -> None:
    executor = _executor(tmp_path, _command("triple", "echo {a} {b} {c}"))
    args = {key: "x" for key in ("a", "b", "c") if key != omitted}

    result = executor.execute("triple", args)

    assert not result.success
    assert result.error == f"Missing required arguments for command triple: {omitted}"
    assert executor.metrics.commands_executed == 0


def test_execute_lists_all_missing_placeholders_once(tmp_path: Path) -> None:
    executor = _executor(tmp_path, _command("pair", "echo {left} {right} {left}"))

    result = executor.execute("pair", {})

    assert result.error == "Missing required arguments for command pair: left, right"


def test_execute_unknown_command_lists_available(tmp_path: Path) -> None:
    executor = _executor(tmp_path, _command("one", "echo 1"), _command("two", "echo 2"))

    result = executor.execute("three")

    assert not result.success
    assert result.error is not None
    assert "Unknown command: three" in result.error
    assert "one, two" in result.error


def test_execute_failure_reports_exit_code_and_classifies_stderr(tmp_path: Path) -> None:
    executor = _executor(
        tmp_path,
        _command("missing", "echo 'cat: nope: No such file or directory' >&2; exit 3"),
    )

    result = executor.execute("missing")

    assert not result.success
    assert result.exit_code == 3
    assert result.error is not None
    assert result.error.startswith("Command failed with exit code 3")
    assert result.error_type == "not_found"
    assert executor.metrics.failures_by_error_type["not_found"] == 1


def test_execute_timeout_is_classified(tmp_path: Path) -> None:
    executor = _executor(tmp_path, _command("slow", "sleep 5", timeout_seconds=0.2))

    result = executor.execute("slow")

    assert not result.success
    assert result.error_type == "timeout"
    assert result.error is not None
    assert "timed out" in result.error
    assert result.duration_seconds < 5


def test_timeout_milliseconds_are_accepted() -> None:
    definition = _command("slow", "sleep 5", timeoutMs=200)
    assert definition.timeout_seconds == pytest.approx(0.2)


def test_execute_rejects_destructive_command(tmp_path: Path) -> None:
    executor = _executor(tmp_path, _command("wipe", "rm -rf /"))

    result = executor.execute("wipe")

    assert not result.success
    assert result.error_type == "permission"
    assert result.error is not None
    assert "Permission denied" in result.error


def test_execute_runs_in_project_root(tmp_path: Path) -> None:
    (tmp_path / "marker.txt").write_text("present", encoding="utf-8")
    executor = _executor(tmp_path, _command("show", "cat marker.txt"))

    result = executor.execute("show")

    assert result.output == "present"


def test_output_over_buffer_limit_fails_as_memory(tmp_path: Path) -> None:
    executor = _executor(
        tmp_path,
        _command("noisy", "printf '%0200d' 0"),
        max_output_bytes=64,
    )

    result = executor.execute("noisy")

    assert not result.success
    assert result.error_type == "memory"
    assert len(result.output) <= 64


def test_output_cap_stops_command_without_waiting_for_exit(tmp_path: Path) -> None:
    executor = _executor(
        tmp_path,
        _command("flood", "head -c 200000 /dev/zero | tr '\\0' a; sleep 4"),
        max_output_bytes=1000,
        default_timeout_seconds=20,
    )

    start = time.monotonic()
    result = executor.execute("flood")
    elapsed = time.monotonic() - start

    assert elapsed < 3
    assert not result.success
    assert result.error_type == "memory"
    assert len(result.output) <= 1000


def test_run_process_caps_stderr_as_well(tmp_path: Path) -> None:
    start = time.monotonic()
    outcome = run_process(
        "head -c 50000 /dev/zero | tr '\\0' e >&2; sleep 4",
        cwd=tmp_path,
        timeout_seconds=20,
        max_output_bytes=1000,
    )

    assert time.monotonic() - start < 3
    assert outcome.overflowed
    assert not outcome.timed_out
    assert 0 < len(outcome.stderr) <= 1000
    assert outcome.stdout == ""


def test_requires_confirmation_proceeds_with_warning(
    tmp_path: Path, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(logging.getLogger("devloop"), "propagate", True)
    executor = _executor(
        tmp_path,
        _command("drop", "echo dropped", requiresConfirmation=True),
    )

    with caplog.at_level("WARNING", logger="devloop"):
        result = executor.execute("drop")

    assert result.success
    assert "requires confirmation" in caplog.text


def test_metrics_track_success_and_failure(tmp_path: Path) -> None:
    executor = _executor(
        tmp_path,
        _command("ok", "echo ok", purpose="cache-clear"),
        _command("bad", "exit 1", purpose="code-check"),
    )

    executor.execute("ok")
    executor.execute("ok")
    executor.execute("bad")

    metrics = executor.metrics
    assert metrics.commands_executed == 3
    assert metrics.commands_by_purpose["cache-clear"] == 2
    assert metrics.commands_by_name["bad"] == 1
    assert metrics.failures_total == 1
    assert metrics.failures_by_command["bad"] == 1
    assert metrics.failures_by_error_type["unknown"] == 1
    assert metrics.success_rate == pytest.approx(2 / 3)
    assert metrics.avg_execution_seconds > 0

    executor.reset_metrics()
    assert executor.metrics.commands_executed == 0
    assert executor.metrics.success_rate == 0.0


def test_events_are_emitted_for_success_and_failure(tmp_path: Path) -> None:
    events = EventStream()
    executor = _executor(
        tmp_path,
        _command("ok", "echo ok"),
        _command("bad", "exit 2"),
        events=events,
    )

    executor.execute("ok")
    executor.execute("bad")

    types = [event.type for event in events.latest(10)]
    assert types == ["cli:command_executed", "cli:command_failed"]
    failed = events.poll(types=["cli:command_failed"])[0]
    assert failed.severity == "error"
    assert failed.data["command_name"] == "bad"


def test_execute_raw_skips_registry_and_metrics(tmp_path: Path) -> None:
    executor = _executor(tmp_path)

    result = executor.execute_raw("echo raw output")

    assert result.success
    assert result.command_name == "raw"
    assert result.output == "raw output"
    assert executor.metrics.commands_executed == 0


def test_commands_for_prompt_groups_by_purpose(tmp_path: Path) -> None:
    executor = _executor(
        tmp_path,
        _command("cache-rebuild", "echo cr", purpose="cache-clear", description="Rebuild caches."),
        _command(
            "module-enable",
            "echo en {module}",
            purpose="module-enable",
            example="echo en views",
        ),
    )

    listing = executor.commands_for_prompt()

    assert listing.startswith("## Available CLI Commands")
    assert "### Cache Clear" in listing
    assert "### Module Enable" in listing
    assert "- **cache-rebuild**: Rebuild caches." in listing
    assert "  - Placeholders: module" in listing
    assert "  - Example: `echo en views`" in listing


def test_from_config_registers_framework_commands(tmp_path: Path) -> None:
    config = EngineConfig(project_root=tmp_path, framework="drupal")

    executor = CommandExecutor.from_config(config)

    assert "cache-rebuild" in executor.command_names
    module_enable = executor.get_command("module-enable")
    assert module_enable is not None
    assert module_enable.required_arguments == ["module"]


def test_executor_rejects_non_positive_limits(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        CommandExecutor(tmp_path, default_timeout_seconds=0)
    with pytest.raises(ValueError):
        CommandExecutor(tmp_path, max_output_bytes=0)


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Operation timed out", "timeout"),
        ("bash: ./x: Permission denied", "permission"),
        ("drush: command not found", "not_found"),
        ("Could not connect to database", "connection"),
        ("Allowed memory size exhausted", "memory"),
        ("PHP Parse error: syntax error", "syntax"),
        ("something odd", "unknown"),
        ("timeout while connection was refused", "timeout"),
    ],
)
def test_classify_error_order(message: str, expected: str) -> None:
    assert classify_error(message) == expected


def test_substitution_helpers() -> None:
    command = substitute_placeholders("drush en {module} {module} {extra}", {"module": "views"})
    assert command == "drush en views views {extra}"
    assert unresolved_placeholders(command) == ["extra"]


def test_run_process_kills_child_tree_on_timeout(tmp_path: Path) -> None:
    outcome = run_process("sleep 5 & sleep 5; wait", cwd=tmp_path, timeout_seconds=0.2)

    assert outcome.timed_out
    assert not outcome.success


def test_run_process_reports_missing_working_directory(tmp_path: Path) -> None:
    outcome = run_process("echo hi", cwd=tmp_path / "absent", timeout_seconds=5)

    assert outcome.spawn_error is not None
    assert not outcome.success
