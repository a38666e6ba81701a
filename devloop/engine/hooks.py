"""Lifecycle hooks declared in phase file frontmatter."""

from __future__ import annotations

import os
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from devloop.engine.executor import CommandExecutor, run_process
from devloop.engine.models import HookEvent, HookResult, PhaseHook, PhaseHooks
from devloop.engine.security import redact_sensitive_text, truncate
from devloop.logging_utils import get_logger

LOGGER = get_logger("hooks")

FRONTMATTER_PATTERN = re.compile(r"\A\ufeff?---\r?\n(.*?)\r?\n---(?:\r?\n|\Z)", re.DOTALL)

PHASE_FILE_SUFFIX = ".md.yml"


class HookExecutionError(RuntimeError):
    """Raised inside a hook run; converted to a failed HookResult."""


class HookFileError(ValueError):
    """Raised when a phase file exists but its hooks cannot be read."""


@dataclass(frozen=True)
class HookContext:
    """Identifiers attached to hook events for trace assembly."""

    prd_id: str | None = None
    phase_id: str | int | None = None
    task_id: str | None = None


def read_frontmatter(text: str) -> dict[str, Any] | None:
    """Parse the leading ``---`` fenced YAML block, or None when absent.

    Raises ``yaml.YAMLError`` for unparsable YAML and ``ValueError`` when the
    block is not a mapping.
    """
    match = FRONTMATTER_PATTERN.match(text)
    if match is None:
        return None
    data = yaml.safe_load(match.group(1))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Frontmatter must be a YAML mapping.")
    return data


class PhaseHookExecutor:
    """Executes onPhaseStart / onPhaseComplete / onTaskComplete hooks in order.

    Hooks are re-read from disk on every call so that edits to a phase file
    apply to the next transition. After a failed hook the sequence stops
    unless that hook sets ``continueOnError``.
    """

    def __init__(self, executor: CommandExecutor, *, debug: bool | None = None) -> None:
        """Initialize with the executor used for cli_command hooks."""
        self.executor = executor
        self.debug = executor.debug if debug is None else debug

    def load_phase_hooks(self, phase_file: Path) -> PhaseHooks | None:
        """Load hook lists from a phase file.

        Returns None when the file, its frontmatter or its ``hooks`` key is
        absent. Raises ``HookFileError`` when the file exists but cannot be
        read, its frontmatter does not parse, or the hooks section is malformed.
        """
        if not phase_file.exists():
            LOGGER.debug("Phase file not found: %s", phase_file)
            return None
        try:
            frontmatter = read_frontmatter(phase_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ValueError) as exc:
            LOGGER.warning("Failed to load hooks from %s: %s", phase_file, exc)
            raise HookFileError(f"Failed to load hooks from {phase_file}: {exc}") from exc
        if frontmatter is None:
            LOGGER.debug("No YAML frontmatter found in: %s", phase_file)
            return None
        if "hooks" not in frontmatter or frontmatter["hooks"] is None:
            LOGGER.debug("No hooks section in: %s", phase_file)
            return None
        hooks_raw = frontmatter["hooks"]
        if not isinstance(hooks_raw, Mapping):
            raise HookFileError(f"Invalid hooks section in {phase_file}: expected a mapping.")
        try:
            hooks = PhaseHooks.from_dict(hooks_raw)
        except ValueError as exc:
            LOGGER.warning("Invalid hooks section in %s: %s", phase_file, exc)
            raise HookFileError(f"Invalid hooks section in {phase_file}: {exc}") from exc
        LOGGER.debug(
            "Loaded hooks from %s: onPhaseStart=%d onPhaseComplete=%d onTaskComplete=%d",
            phase_file,
            len(hooks.on_phase_start),
            len(hooks.on_phase_complete),
            len(hooks.on_task_complete),
        )
        return hooks

    def execute_on_phase_start(
        self, phase_file: Path, context: HookContext | None = None
    ) -> list[HookResult]:
        """Run onPhaseStart hooks."""
        return self.execute_event(phase_file, "onPhaseStart", context)

    def execute_on_phase_complete(
        self, phase_file: Path, context: HookContext | None = None
    ) -> list[HookResult]:
        """Run onPhaseComplete hooks."""
        return self.execute_event(phase_file, "onPhaseComplete", context)

    def execute_on_task_complete(
        self, phase_file: Path, context: HookContext | None = None
    ) -> list[HookResult]:
        """Run onTaskComplete hooks."""
        return self.execute_event(phase_file, "onTaskComplete", context)

    def execute_event(
        self,
        phase_file: Path,
        event: HookEvent,
        context: HookContext | None = None,
    ) -> list[HookResult]:
        """Run the hooks for one lifecycle event, honoring continueOnError.

        Returns results for every hook that ran, ending with the failing hook
        when the sequence stopped early. A phase file whose hooks cannot be
        loaded yields a single failed ``config`` result with index -1.
        """
        ctx = context or HookContext()
        try:
            hooks = self.load_phase_hooks(phase_file)
        except HookFileError as exc:
            result = HookResult(
                success=False,
                hook_event=event,
                hook_index=-1,
                hook_type="config",
                description=f"Load hooks from {phase_file.name}",
                duration_seconds=0.0,
                error=str(exc),
            )
            self._emit("hook:failed", result, ctx)
            return [result]
        entries = hooks.for_event(event) if hooks is not None else ()
        if not entries:
            return []
        LOGGER.info("Executing %d %s hooks for phase: %s", len(entries), event, phase_file)
        results: list[HookResult] = []
        for index, entry in enumerate(entries):
            result, continue_on_error = self._execute_hook(entry, index, event, ctx)
            results.append(result)
            if not result.success and not continue_on_error:
                LOGGER.error("Hook failed and continueOnError is false; stopping %s hooks", event)
                break
        return results

    def _execute_hook(
        self,
        entry: Any,
        index: int,
        event: HookEvent,
        context: HookContext,
    ) -> tuple[HookResult, bool]:
        start = time.perf_counter()
        try:
            hook = PhaseHook.from_dict(entry)
        except ValueError as exc:
            message = f"Invalid hook definition: {exc}"
            LOGGER.error("Hook %d (%s) rejected: %s", index + 1, event, exc)
            hook_type = str(entry.get("type")) if isinstance(entry, Mapping) else "invalid"
            continue_on_error = (
                isinstance(entry, Mapping) and entry.get("continueOnError") is True
            )
            result = HookResult(
                success=False,
                hook_event=event,
                hook_index=index,
                hook_type=hook_type,
                description=message,
                duration_seconds=time.perf_counter() - start,
                error=message,
            )
            self._emit("hook:failed", result, context)
            return result, continue_on_error

        description = hook.label
        LOGGER.info("Executing hook %d: %s", index + 1, description)
        self.executor.events.emit(
            "hook:started",
            {
                "hook_event": event,
                "hook_index": index,
                "description": description,
                "type": hook.type,
            },
            task_id=context.task_id,
            prd_id=context.prd_id,
            phase_id=context.phase_id,
        )

        error: str | None = None
        try:
            if hook.type == "cli_command":
                self._run_cli_command(hook)
            elif hook.type == "shell":
                self._run_shell(hook)
            else:
                LOGGER.warning("Callback hooks are not implemented; skipping %s", description)
        except HookExecutionError as exc:
            error = str(exc)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Unexpected error in hook %d", index + 1)
            error = f"Unexpected hook error: {exc}"

        duration = time.perf_counter() - start
        result = HookResult(
            success=error is None,
            hook_event=event,
            hook_index=index,
            hook_type=hook.type,
            description=description,
            duration_seconds=duration,
            error=error,
        )
        if error is None:
            LOGGER.info("Hook %d completed successfully (%.2fs)", index + 1, duration)
            self._emit("hook:completed", result, context)
        else:
            LOGGER.error("Hook %d failed: %s", index + 1, error)
            self._emit("hook:failed", result, context)
        return result, hook.continue_on_error

    def _run_cli_command(self, hook: PhaseHook) -> None:
        if not hook.cli_command:
            raise HookExecutionError("CLI command hook missing cliCommand property")
        LOGGER.debug("Executing CLI command hook %s with args %s", hook.cli_command, hook.args)
        result = self.executor.execute(hook.cli_command, hook.args)
        if not result.success:
            raise HookExecutionError(f"CLI command failed: {result.error or 'Unknown error'}")

    def _run_shell(self, hook: PhaseHook) -> None:
        if not hook.command:
            raise HookExecutionError("Shell command hook missing command property")
        env = {**os.environ, **hook.args}
        LOGGER.debug("Executing shell hook: %s", hook.command)
        outcome = run_process(
            hook.command,
            cwd=self.executor.project_root,
            timeout_seconds=self.executor.default_timeout_seconds,
            max_output_bytes=self.executor.max_output_bytes,
            env=env,
            capture=not self.debug,
        )
        if outcome.success:
            return
        if outcome.spawn_error is not None:
            raise HookExecutionError(f"Shell command could not be started: {outcome.spawn_error}")
        if outcome.timed_out:
            raise HookExecutionError(
                f"Shell command timed out after {self.executor.default_timeout_seconds:g}s"
            )
        if outcome.overflowed:
            raise HookExecutionError("Shell command output exceeded buffer limit")
        detail = outcome.stderr.strip() or outcome.stdout.strip()
        message = f"Shell command failed with exit code {outcome.exit_code}: {hook.command}"
        if detail:
            message = f"{message}\n{detail}"
        raise HookExecutionError(message)

    def _emit(self, event_type: str, result: HookResult, context: HookContext) -> None:
        data: dict[str, object] = {
            "hook_event": result.hook_event,
            "hook_index": result.hook_index,
            "type": result.hook_type,
            "description": result.description,
            "success": result.success,
            "duration_seconds": result.duration_seconds,
        }
        if result.error is not None:
            data["error"] = truncate(redact_sensitive_text(result.error))
        self.executor.events.emit(
            event_type,
            data,
            severity="error" if not result.success else "info",
            task_id=context.task_id,
            prd_id=context.prd_id,
            phase_id=context.phase_id,
        )


def find_phase_file_path(prd_set_dir: Path, prd_id: str, phase_id: str | int) -> Path | None:
    """Locate a phase file by the conventional naming patterns."""
    candidates = (
        f"phase{phase_id}_phase_{phase_id}{PHASE_FILE_SUFFIX}",
        f"phase_{phase_id}{PHASE_FILE_SUFFIX}",
        f"phase{phase_id}{PHASE_FILE_SUFFIX}",
        f"{prd_id}_phase{phase_id}{PHASE_FILE_SUFFIX}",
    )
    for name in candidates:
        path = prd_set_dir / name
        if path.exists():
            return path
    if not prd_set_dir.is_dir():
        return None
    # Bare substring match would let phase1 claim phase10's file.
    loose = re.compile(rf"phase{re.escape(str(phase_id))}(?!\d)")
    for path in sorted(prd_set_dir.iterdir()):
        if path.name.endswith(PHASE_FILE_SUFFIX) and loose.search(path.name):
            return path
    return None
