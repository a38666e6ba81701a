"""Framework CLI command registry and subprocess execution."""

from __future__ import annotations

import os
import shutil
import signal
import subprocess  # nosec B404
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from io import BufferedReader
from pathlib import Path
from queue import Empty, Queue

from devloop.engine.config import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_TIMEOUT_SECONDS, EngineConfig
from devloop.engine.events import EventStream
from devloop.engine.frameworks import FrameworkPlugin, get_framework_plugin
from devloop.engine.metrics import CommandMetrics
from devloop.engine.models import PLACEHOLDER_PATTERN, CommandDefinition, ExecutionResult
from devloop.engine.security import (
    SecurityError,
    ensure_command_safe,
    redact_sensitive_text,
    truncate,
)
from devloop.logging_utils import get_logger

LOGGER = get_logger("executor")

RAW_COMMAND_NAME = "raw"

# Evaluated top to bottom; first hit wins. Heuristic, not exhaustive.
ERROR_TYPE_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("timeout", "timed out"), "timeout"),
    (("permission denied", "operation not permitted"), "permission"),
    (("not found", "no such file or directory"), "not_found"),
    (("connection", "could not connect"), "connection"),
    (("memory",), "memory"),
    (("syntax",), "syntax"),
)

ERROR_TYPES = ("timeout", "permission", "not_found", "connection", "memory", "syntax", "unknown")


def classify_error(message: str) -> str:
    """Map raw error text to a coarse error category."""
    lowered = message.lower()
    for needles, category in ERROR_TYPE_RULES:
        if any(needle in lowered for needle in needles):
            return category
    return "unknown"


@dataclass(frozen=True)
class ProcessOutcome:
    """Captured result of one subprocess run."""

    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    overflowed: bool = False
    spawn_error: str | None = None

    @property
    def success(self) -> bool:
        """True when the process exited cleanly within limits."""
        return (
            self.exit_code == 0
            and not self.timed_out
            and not self.overflowed
            and self.spawn_error is None
        )


def shell_argv(command: str) -> list[str]:
    """Wrap a command string for the platform shell."""
    if os.name == "nt":
        return ["powershell", "-NoProfile", "-Command", command]
    shell = shutil.which("bash") or "/bin/sh"
    return [shell, "-c", command]


READ_CHUNK_BYTES = 65536
KILL_GRACE_SECONDS = 5.0


def _pump_stream(
    stream: BufferedReader,
    source: str,
    queue: Queue[tuple[str, bytes | None]],
) -> None:
    for chunk in iter(lambda: stream.read1(READ_CHUNK_BYTES), b""):
        queue.put((source, chunk))
    queue.put((source, None))


class _CappedBuffer:
    """Keeps at most ``limit`` bytes of a stream while counting everything seen."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.seen = 0
        self._chunks: list[bytes] = []

    def add(self, chunk: bytes) -> None:
        if self.seen < self.limit:
            self._chunks.append(chunk)
        self.seen += len(chunk)

    @property
    def overflowed(self) -> bool:
        return self.seen > self.limit

    def text(self) -> str:
        return b"".join(self._chunks)[: self.limit].decode("utf-8", errors="replace")


def run_process(
    command: str,
    *,
    cwd: Path,
    timeout_seconds: float,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    env: Mapping[str, str] | None = None,
    capture: bool = True,
) -> ProcessOutcome:
    """Run a shell command, killing its whole process group on timeout or overflow.

    Each pipe is drained by its own reader thread. As soon as either stream
    passes ``max_output_bytes`` the process group is killed and both streams
    come back truncated to the cap. With ``capture=False`` output goes
    straight to the parent terminal and the returned stdout/stderr are empty.
    """
    pipe = subprocess.PIPE if capture else None
    deadline = time.monotonic() + timeout_seconds
    try:
        process = subprocess.Popen(  # noqa: S603  # nosec B603
            shell_argv(command),
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdout=pipe,
            stderr=pipe,
            start_new_session=os.name != "nt",
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
        return ProcessOutcome(exit_code=None, stdout="", stderr="", spawn_error=str(exc))

    buffers = {
        "stdout": _CappedBuffer(max_output_bytes),
        "stderr": _CappedBuffer(max_output_bytes),
    }
    queue: Queue[tuple[str, bytes | None]] = Queue()
    threads: list[threading.Thread] = []
    if process.stdout is not None and process.stderr is not None:
        threads = [
            threading.Thread(
                target=_pump_stream, args=(process.stdout, "stdout", queue), daemon=True
            ),
            threading.Thread(
                target=_pump_stream, args=(process.stderr, "stderr", queue), daemon=True
            ),
        ]
    for thread in threads:
        thread.start()

    timed_out = False
    overflowed = False
    open_streams = len(threads)
    while open_streams and not overflowed:
        remaining = deadline - time.monotonic()
        try:
            source, chunk = queue.get(timeout=max(remaining, 0))
        except Empty:
            timed_out = True
            break
        if chunk is None:
            open_streams -= 1
            continue
        buffers[source].add(chunk)
        overflowed = buffers[source].overflowed

    if not timed_out and not overflowed:
        try:
            process.wait(timeout=max(deadline - time.monotonic(), 0.001))
        except subprocess.TimeoutExpired:
            timed_out = True

    if timed_out or overflowed:
        _kill(process)
        try:
            process.wait(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            LOGGER.warning("Process %d still running after kill", process.pid)

    for thread in threads:
        thread.join(timeout=1)
    while not queue.empty():
        source, chunk = queue.get_nowait()
        if chunk is not None:
            buffers[source].add(chunk)

    return ProcessOutcome(
        exit_code=process.returncode,
        stdout=buffers["stdout"].text(),
        stderr=buffers["stderr"].text(),
        timed_out=timed_out,
        overflowed=overflowed or any(buffer.overflowed for buffer in buffers.values()),
    )


def _kill(process: subprocess.Popen[bytes]) -> None:
    """Terminate process and any children it spawned."""
    if os.name != "nt":
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    process.kill()


class CommandExecutor:
    """Registry of framework CLI commands plus a timed subprocess runner.

    Expected failures (unknown command, missing placeholder arguments,
    non-zero exit, timeout) come back as an unsuccessful ``ExecutionResult``
    rather than an exception.
    """

    def __init__(
        self,
        project_root: Path,
        *,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        debug: bool = False,
        metrics: CommandMetrics | None = None,
        events: EventStream | None = None,
    ) -> None:
        """Initialize executor rooted at project_root."""
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be greater than zero.")
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be greater than zero.")
        self.project_root = project_root
        self.default_timeout_seconds = default_timeout_seconds
        self.max_output_bytes = max_output_bytes
        self.debug = debug
        self.metrics = metrics if metrics is not None else CommandMetrics()
        self.events = events if events is not None else EventStream()
        self._commands: dict[str, CommandDefinition] = {}

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        events: EventStream | None = None,
        metrics: CommandMetrics | None = None,
    ) -> CommandExecutor:
        """Build an executor and register the configured framework's commands."""
        executor = cls(
            config.project_root,
            default_timeout_seconds=config.default_timeout_seconds,
            max_output_bytes=config.max_output_bytes,
            debug=config.debug,
            metrics=metrics,
            events=events if events is not None else EventStream(persist_path=config.events_path),
        )
        executor.register_plugin(get_framework_plugin(config.framework))
        return executor

    def register_commands(self, commands: Iterable[CommandDefinition]) -> None:
        """Add or overwrite command definitions by name."""
        for command in commands:
            self._commands[command.name] = command
            LOGGER.debug("Registered command: %s", command.name)

    def register_plugin(self, plugin: FrameworkPlugin) -> None:
        """Register every command a framework plugin supplies."""
        commands = plugin.cli_commands()
        self.register_commands(commands)
        LOGGER.debug("Registered %d %s commands", len(commands), plugin.framework_id)

    def get_command(self, name: str) -> CommandDefinition | None:
        """Return a registered command by name."""
        return self._commands.get(name)

    def list_commands(self) -> list[CommandDefinition]:
        """Return registered commands in registration order."""
        return list(self._commands.values())

    @property
    def command_names(self) -> list[str]:
        """Names of registered commands in registration order."""
        return list(self._commands)

    def execute(self, name: str, args: Mapping[str, str] | None = None) -> ExecutionResult:
        """Substitute args into a registered template and run it."""
        start = time.perf_counter()
        definition = self._commands.get(name)
        if definition is None:
            available = ", ".join(self._commands) or "(none)"
            LOGGER.warning("Unknown command requested: %s", name)
            return ExecutionResult(
                success=False,
                output="",
                command="",
                command_name=name,
                duration_seconds=time.perf_counter() - start,
                error=f"Unknown command: {name}. Available commands: {available}",
            )

        command = substitute_placeholders(definition.template, args or {})
        missing = unresolved_placeholders(command)
        if missing:
            LOGGER.warning("Command %s missing arguments: %s", name, ", ".join(missing))
            return ExecutionResult(
                success=False,
                output="",
                command=command,
                command_name=name,
                duration_seconds=time.perf_counter() - start,
                error=f"Missing required arguments for command {name}: {', '.join(missing)}",
            )

        if definition.requires_confirmation:
            LOGGER.warning(
                "Command %s requires confirmation; proceeding unattended in autonomous mode",
                name,
            )
        LOGGER.debug("Executing %s: %s", name, command)

        timeout = definition.timeout_seconds or self.default_timeout_seconds
        result = self._run(command, name, timeout, start)
        if result.success:
            self.metrics.record_success(name, definition.purpose, result.duration_seconds)
            self.events.emit(
                "cli:command_executed",
                {
                    "command_name": name,
                    "purpose": definition.purpose,
                    "success": True,
                    "duration_seconds": result.duration_seconds,
                    "idempotent": definition.idempotent,
                    "requires_confirmation": definition.requires_confirmation,
                },
            )
        else:
            error_type = result.error_type or "unknown"
            self.metrics.record_failure(name, definition.purpose, error_type)
            LOGGER.warning(
                "Command %s failed (%s): %s", name, error_type, truncate(result.error or "")
            )
            self.events.emit(
                "cli:command_failed",
                {
                    "command_name": name,
                    "purpose": definition.purpose,
                    "success": False,
                    "duration_seconds": result.duration_seconds,
                    "error_type": error_type,
                    "error": truncate(redact_sensitive_text(result.error or "")),
                    "requires_confirmation": definition.requires_confirmation,
                },
                severity="error",
            )
        return result

    def execute_raw(self, command: str, timeout_seconds: float | None = None) -> ExecutionResult:
        """Run an ad-hoc command string without registry lookup or metrics."""
        start = time.perf_counter()
        LOGGER.debug("Executing raw: %s", command)
        timeout = timeout_seconds or self.default_timeout_seconds
        result = self._run(command, RAW_COMMAND_NAME, timeout, start)
        self.events.emit(
            "cli:command_executed" if result.success else "cli:command_failed",
            {
                "command_name": RAW_COMMAND_NAME,
                "success": result.success,
                "duration_seconds": result.duration_seconds,
                "error_type": result.error_type,
            },
            severity="info" if result.success else "error",
        )
        return result

    def commands_for_prompt(self) -> str:
        """Render registered commands as markdown grouped by purpose."""
        lines: list[str] = ["## Available CLI Commands", ""]
        grouped: dict[str, list[CommandDefinition]] = {}
        for definition in self._commands.values():
            grouped.setdefault(definition.purpose, []).append(definition)
        for purpose, definitions in grouped.items():
            lines.append(f"### {_format_purpose(purpose)}")
            lines.append("")
            for definition in definitions:
                lines.append(f"- **{definition.name}**: {definition.description}")
                lines.append(f"  - Command: `{definition.template}`")
                placeholders = list(definition.placeholders) or definition.required_arguments
                if placeholders:
                    lines.append(f"  - Placeholders: {', '.join(placeholders)}")
                if definition.example:
                    lines.append(f"  - Example: `{definition.example}`")
                lines.append("")
        return "\n".join(lines)

    def reset_metrics(self) -> None:
        """Zero the execution counters."""
        self.metrics.reset()

    def _run(self, command: str, name: str, timeout: float, start: float) -> ExecutionResult:
        try:
            ensure_command_safe(command)
        except SecurityError as exc:
            return ExecutionResult(
                success=False,
                output="",
                command=command,
                command_name=name,
                duration_seconds=time.perf_counter() - start,
                error=str(exc),
                error_type="permission",
            )

        outcome = run_process(
            command,
            cwd=self.project_root,
            timeout_seconds=timeout,
            max_output_bytes=self.max_output_bytes,
        )
        duration = time.perf_counter() - start
        stderr = outcome.stderr.strip()
        if outcome.success:
            return ExecutionResult(
                success=True,
                output=outcome.stdout.strip(),
                command=command,
                command_name=name,
                duration_seconds=duration,
                error=stderr or None,
                exit_code=0,
            )

        if outcome.spawn_error is not None:
            error = f"Command could not be started: {outcome.spawn_error}"
            classified = classify_error(outcome.spawn_error)
        elif outcome.timed_out:
            error = f"Command timed out after {timeout:g}s: {command}"
            classified = "timeout"
        elif outcome.overflowed:
            error = f"Command output exceeded buffer limit of {self.max_output_bytes} bytes"
            classified = "memory"
        else:
            detail = stderr or outcome.stdout.strip()
            error = f"Command failed with exit code {outcome.exit_code}: {command}"
            if detail:
                error = f"{error}\n{detail}"
            classified = classify_error(detail) if detail else "unknown"
        return ExecutionResult(
            success=False,
            output=outcome.stdout.strip(),
            command=command,
            command_name=name,
            duration_seconds=duration,
            error=error,
            exit_code=outcome.exit_code,
            error_type=classified,
        )


def substitute_placeholders(template: str, args: Mapping[str, str]) -> str:
    """Replace every ``{key}`` occurrence for each supplied argument."""
    command = template
    for key, value in args.items():
        command = command.replace("{" + str(key) + "}", str(value))
    return command


def unresolved_placeholders(command: str) -> list[str]:
    """Return distinct ``{word}`` tokens still present after substitution."""
    missing: list[str] = []
    for name in PLACEHOLDER_PATTERN.findall(command):
        if name not in missing:
            missing.append(name)
    return missing


def _format_purpose(purpose: str) -> str:
    return " ".join(word.capitalize() for word in purpose.split("-"))
