"""Tests for phase lifecycle hook loading and execution."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest
import yaml

from devloop.engine.events import EventStream
from devloop.engine.executor import CommandExecutor
from devloop.engine.hooks import (
    HookContext,
    HookFileError,
    PhaseHookExecutor,
    find_phase_file_path,
    read_frontmatter,
)
from devloop.engine.models import CommandDefinition


def _write_phase(path: Path, hooks: dict[str, Any], body: str = "# Phase\n") -> Path:
    frontmatter = yaml.safe_dump({"phase": {"id": 1}, "hooks": hooks}, sort_keys=False)
    path.write_text(f"---\n{frontmatter}---\n{body}", encoding="utf-8")
    return path


def _runner(tmp_path: Path) -> PhaseHookExecutor:
    executor = CommandExecutor(tmp_path, events=EventStream())
    executor.register_commands(
        [
            CommandDefinition(name="cache-rebuild", template="echo rebuilt", purpose="cache-clear"),
            CommandDefinition(name="broken", template="exit 7", purpose="health-check"),
            CommandDefinition(
                name="module-enable", template="echo enable {module}", purpose="module-enable"
            ),
        ]
    )
    return PhaseHookExecutor(executor)


def test_failed_hook_stops_sequence(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {
            "onPhaseComplete": [
                {"type": "shell", "command": "exit 1", "description": "H1"},
                {"type": "shell", "command": "touch h2-ran", "description": "H2"},
            ]
        },
    )

    results = _runner(tmp_path).execute_on_phase_complete(phase_file)

    assert len(results) == 1
    assert results[0].description == "H1"
    assert not results[0].success
    assert not (tmp_path / "h2-ran").exists()


def test_continue_on_error_runs_remaining_hooks(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {
            "onPhaseComplete": [
                {
                    "type": "shell",
                    "command": "exit 1",
                    "description": "H1",
                    "continueOnError": True,
                },
                {"type": "shell", "command": "touch h2-ran", "description": "H2"},
            ]
        },
    )

    results = _runner(tmp_path).execute_on_phase_complete(phase_file)

    assert [result.description for result in results] == ["H1", "H2"]
    assert [result.success for result in results] == [False, True]
    assert [result.hook_index for result in results] == [0, 1]
    assert (tmp_path / "h2-ran").exists()


def test_cli_command_hook_uses_registry(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {
            "onPhaseStart": [
                {"type": "cli_command", "cliCommand": "module-enable", "args": {"module": "views"}},
                {"type": "cli_command", "cliCommand": "broken"},
            ]
        },
    )
    runner = _runner(tmp_path)

    results = runner.execute_on_phase_start(phase_file)

    assert [result.success for result in results] == [True, False]
    assert results[0].description == "cli_command: module-enable"
    assert results[1].error is not None
    assert results[1].error.startswith("CLI command failed:")
    assert runner.executor.metrics.commands_by_name["module-enable"] == 1


def test_shell_hook_receives_args_as_environment(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {
            "onTaskComplete": [
                {
                    "type": "shell",
                    "command": 'test "$DEPLOY_TARGET" = staging',
                    "args": {"DEPLOY_TARGET": "staging"},
                }
            ]
        },
    )

    results = _runner(tmp_path).execute_on_task_complete(phase_file)

    assert len(results) == 1
    assert results[0].success
    assert results[0].hook_event == "onTaskComplete"


def test_shell_hook_failure_includes_exit_code(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {"onPhaseStart": [{"type": "shell", "command": "echo boom >&2; exit 5"}]},
    )

    results = _runner(tmp_path).execute_on_phase_start(phase_file)

    assert results[0].error is not None
    assert "exit code 5" in results[0].error
    assert "boom" in results[0].error


def test_callback_hook_is_a_noop_success(
    tmp_path: Path, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(logging.getLogger("devloop"), "propagate", True)
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {"onPhaseStart": [{"type": "callback", "description": "notify"}]},
    )

    with caplog.at_level("WARNING", logger="devloop"):
        results = _runner(tmp_path).execute_on_phase_start(phase_file)

    assert results[0].success
    assert results[0].hook_type == "callback"
    assert "not implemented" in caplog.text


def test_invalid_hook_is_reported_in_sequence(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {
            "onPhaseStart": [
                {"type": "webhook", "command": "curl x", "continueOnError": True},
                {"type": "shell", "command": "true"},
            ]
        },
    )

    results = _runner(tmp_path).execute_on_phase_start(phase_file)

    assert [result.success for result in results] == [False, True]
    assert results[0].error is not None
    assert results[0].error.startswith("Invalid hook definition")


def test_missing_cli_command_property_fails(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {"onPhaseStart": [{"type": "cli_command"}]},
    )

    results = _runner(tmp_path).execute_on_phase_start(phase_file)

    assert results[0].error == "CLI command hook missing cliCommand property"


def test_hooks_are_reread_on_every_call(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase1.md.yml",
        {"onPhaseStart": [{"type": "shell", "command": "true"}]},
    )
    runner = _runner(tmp_path)
    assert len(runner.execute_on_phase_start(phase_file)) == 1

    _write_phase(
        phase_file,
        {"onPhaseStart": [{"type": "shell", "command": "true"}] * 2},
    )

    assert len(runner.execute_on_phase_start(phase_file)) == 2


def test_hook_events_carry_context(tmp_path: Path) -> None:
    phase_file = _write_phase(
        tmp_path / "phase2.md.yml",
        {
            "onPhaseStart": [
                {"type": "shell", "command": "true"},
                {"type": "shell", "command": "false"},
            ]
        },
    )
    runner = _runner(tmp_path)

    runner.execute_on_phase_start(
        phase_file, HookContext(prd_id="prd-a", phase_id=2, task_id="task-1")
    )

    events = runner.executor.events.poll(prd_id="prd-a")
    assert [event.type for event in events] == [
        "hook:started",
        "hook:completed",
        "hook:started",
        "hook:failed",
    ]
    assert all(event.phase_id == "2" and event.task_id == "task-1" for event in events)


@pytest.mark.parametrize(
    "content",
    [
        "# No frontmatter\n",
        "---\nphase:\n  id: 1\n---\nbody\n",
        "---\nhooks:\n---\n",
        "---\n# comment only\n---\n",
    ],
)
def test_files_without_usable_hooks_run_nothing(tmp_path: Path, content: str) -> None:
    phase_file = tmp_path / "phase1.md.yml"
    phase_file.write_text(content, encoding="utf-8")
    runner = _runner(tmp_path)

    assert runner.load_phase_hooks(phase_file) is None
    assert runner.execute_on_phase_start(phase_file) == []


def test_missing_phase_file_runs_nothing(tmp_path: Path) -> None:
    runner = _runner(tmp_path)

    assert runner.execute_on_phase_complete(tmp_path / "absent.md.yml") == []


def test_read_frontmatter_handles_bom_and_crlf() -> None:
    text = "\ufeff---\r\nhooks:\r\n  onPhaseStart: []\r\n---\r\nbody"

    assert read_frontmatter(text) == {"hooks": {"onPhaseStart": []}}


def test_find_phase_file_path_patterns(tmp_path: Path) -> None:
    (tmp_path / "phase_2.md.yml").write_text("", encoding="utf-8")
    (tmp_path / "prd-x_phase3.md.yml").write_text("", encoding="utf-8")
    (tmp_path / "phase10_extra.md.yml").write_text("", encoding="utf-8")

    assert find_phase_file_path(tmp_path, "prd-x", 2) == tmp_path / "phase_2.md.yml"
    assert find_phase_file_path(tmp_path, "prd-x", 3) == tmp_path / "prd-x_phase3.md.yml"
    assert find_phase_file_path(tmp_path, "prd-x", 10) == tmp_path / "phase10_extra.md.yml"
    assert find_phase_file_path(tmp_path, "prd-x", 1) is None
    assert find_phase_file_path(tmp_path / "missing", "prd-x", 1) is None


def test_find_phase_file_path_prefers_conventional_name(tmp_path: Path) -> None:
    (tmp_path / "phase1_phase_1.md.yml").write_text("", encoding="utf-8")
    (tmp_path / "phase1.md.yml").write_text("", encoding="utf-8")

    assert find_phase_file_path(tmp_path, "prd", "1") == tmp_path / "phase1_phase_1.md.yml"


@pytest.mark.parametrize(
    ("content", "fragment"),
    [
        ("---\nhooks:\n  onPhaseStart: [\n    - type: shell\n---\n", "Failed to load hooks"),
        ("---\nhooks:\n  onPhaseStart:\n    type: shell\n---\n", "hooks.onPhaseStart"),
        ("---\nhooks: 5\n---\n", "expected a mapping"),
        ("---\n- just\n- a list\n---\n", "Frontmatter must be a YAML mapping"),
    ],
)
def test_malformed_hook_file_is_reported_as_failure(
    tmp_path: Path, content: str, fragment: str
) -> None:
    phase_file = tmp_path / "phase1.md.yml"
    phase_file.write_text(content, encoding="utf-8")
    runner = _runner(tmp_path)

    results = runner.execute_on_phase_start(phase_file, HookContext(prd_id="prd-a", phase_id=1))

    assert len(results) == 1
    failure = results[0]
    assert not failure.success
    assert failure.hook_type == "config"
    assert failure.hook_index == -1
    assert failure.hook_event == "onPhaseStart"
    assert fragment in (failure.error or "")
    event = runner.executor.events.latest(1)[0]
    assert event.type == "hook:failed"
    assert event.severity == "error"
    assert event.prd_id == "prd-a"


def test_load_phase_hooks_raises_for_unparsable_frontmatter(tmp_path: Path) -> None:
    phase_file = tmp_path / "phase1.md.yml"
    phase_file.write_text("---\nhooks: [unterminated\n---\n", encoding="utf-8")

    with pytest.raises(HookFileError):
        _runner(tmp_path).load_phase_hooks(phase_file)


def test_undecodable_hook_file_is_reported_as_failure(tmp_path: Path) -> None:
    phase_file = tmp_path / "phase1.md.yml"
    phase_file.write_bytes(b"---\nhooks:\n  onTaskComplete: []\n---\n\xff\xfe\xfa")

    results = _runner(tmp_path).execute_on_task_complete(phase_file)

    assert [(result.hook_type, result.success) for result in results] == [("config", False)]
