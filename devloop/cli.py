"""Command-line interface for the devloop execution and recovery engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from devloop import __version__
from devloop.engine.config import EngineConfig, EngineConfigError
from devloop.engine.events import EventStream, load_events
from devloop.engine.executor import CommandExecutor
from devloop.engine.hooks import HookContext, HookFileError, PhaseHookExecutor
from devloop.engine.models import HookEvent
from devloop.engine.prd import DiscoveredPrdSet
from devloop.engine.recovery import RecoverySystem
from devloop.engine.validator import PrdSetValidator, ValidationResult
from devloop.logging_utils import configure_logging

app = typer.Typer(add_completion=False, no_args_is_help=True)
commands_app = typer.Typer(no_args_is_help=True)
hooks_app = typer.Typer(no_args_is_help=True)
events_app = typer.Typer(no_args_is_help=True)
console = Console()

app.add_typer(commands_app, name="commands", help="Inspect and run registered CLI commands.")
app.add_typer(hooks_app, name="hooks", help="Inspect and run phase lifecycle hooks.")
app.add_typer(events_app, name="events", help="Read persisted engine events.")

HOOK_EVENT_CHOICES: dict[str, HookEvent] = {
    "start": "onPhaseStart",
    "complete": "onPhaseComplete",
    "task": "onTaskComplete",
}

FrameworkOption = Annotated[
    str | None,
    typer.Option("--framework", help="Framework plugin: generic, drupal, django, react."),
]
ProjectRootOption = Annotated[
    Path | None,
    typer.Option("--project-root", help="Working directory for spawned commands."),
]
EventsFileOption = Annotated[
    Path | None,
    typer.Option("--events-file", help="Append engine events to this JSONL file."),
]


def _version_callback(value: bool) -> None:
    """Print package version and exit when requested."""
    if value:
        console.print(__version__)
        raise typer.Exit()


def _build_config(
    *,
    framework: str | None,
    project_root: Path | None,
    events_file: Path | None,
) -> EngineConfig:
    """Resolve engine configuration from environment plus CLI overrides."""
    try:
        return EngineConfig.from_env(
            framework=framework,
            project_root=project_root,
            events_path=events_file,
        )
    except EngineConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _create_executor(config: EngineConfig) -> CommandExecutor:
    return CommandExecutor.from_config(config)


def _parse_args(pairs: list[str] | None) -> dict[str, str]:
    """Parse repeated ``--arg key=value`` options."""
    parsed: dict[str, str] = {}
    for pair in pairs or []:
        key, separator, value = pair.partition("=")
        if not separator or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{pair}'.")
        parsed[key.strip()] = value
    return parsed


def _load_set_file(set_file: Path) -> DiscoveredPrdSet:
    """Load a discovered PRD set from YAML or JSON."""
    try:
        raw: Any = yaml.safe_load(set_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise typer.BadParameter(f"Could not read PRD set file {set_file}: {exc}") from exc
    if not isinstance(raw, dict):
        raise typer.BadParameter("PRD set file must contain a mapping at the top level.")
    try:
        return DiscoveredPrdSet.from_dict(raw, base_dir=set_file.parent.resolve())
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid PRD set file: {exc}") from exc


def _render_validation(result: ValidationResult) -> None:
    table = Table(title="Set-level checks")
    table.add_column("Check")
    table.add_column("Status")
    for name, passed in (
        ("cycles", result.set_level.cycles),
        ("discoverability", result.set_level.discoverability),
        ("consistency", result.set_level.consistency),
    ):
        table.add_row(name, _status(passed))
    console.print(table)

    if result.prd_level:
        prd_table = Table(title="PRD-level checks")
        prd_table.add_column("PRD")
        prd_table.add_column("Frontmatter")
        prd_table.add_column("Dependencies")
        prd_table.add_column("Phases")
        for item in result.prd_level:
            prd_table.add_row(
                item.prd_id,
                _status(item.frontmatter),
                _status(item.dependencies),
                _status(item.phases),
            )
        console.print(prd_table)

    failing_phases = [item for item in result.phase_level if not item.dependencies]
    if failing_phases:
        phase_table = Table(title="Phase-level failures")
        phase_table.add_column("PRD")
        phase_table.add_column("Phase")
        phase_table.add_column("Error")
        for item in failing_phases:
            phase_table.add_row(item.prd_id, item.phase_id, escape("; ".join(item.errors)))
        console.print(phase_table)

    for warning in result.warnings:
        console.print(f"[yellow]warning[/yellow] {escape(warning)}")
    for error in result.errors:
        console.print(f"[red]error[/red] {escape(error)}", highlight=False)


def _status(passed: bool) -> str:
    return "[green]ok[/green]" if passed else "[red]failed[/red]"


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show devloop version and exit.",
            is_eager=True,
            callback=_version_callback,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug logging."),
    ] = False,
    log_file: Annotated[
        Path,
        typer.Option("--log-file", help="Write logs to devloop.log (default: ./devloop.log)."),
    ] = Path("devloop.log"),
) -> None:
    """Agentic execution and recovery engine for PRD-driven development loops."""
    configure_logging(log_file=log_file, verbose=verbose)


@app.command()
def validate(
    set_file: Annotated[
        Path,
        typer.Argument(help="YAML/JSON file describing a discovered PRD set."),
    ],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the validation report as JSON."),
    ] = False,
    events_file: EventsFileOption = None,
) -> None:
    """Validate a PRD set before execution.

    Example:
        devloop validate .devloop/prd-set.yml
    """
    discovered = _load_set_file(set_file)
    events = EventStream(persist_path=events_file) if events_file is not None else None
    result = PrdSetValidator(events=events).validate_prd_set(discovered)
    if json_output:
        console.print_json(json.dumps(result.to_dict()))
    else:
        _render_validation(result)
        summary = "passed" if result.success else f"failed with {len(result.errors)} errors"
        console.print(f"PRD set {discovered.set_id} {summary}.")
    if not result.success:
        raise typer.Exit(code=1)


@commands_app.command("list")
def commands_list(framework: FrameworkOption = None) -> None:
    """List registered commands for a framework."""
    config = _build_config(framework=framework, project_root=None, events_file=None)
    executor = _create_executor(config)
    definitions = executor.list_commands()
    if not definitions:
        console.print(f"No commands registered for framework '{config.framework}'.")
        return
    table = Table(title=f"Commands ({config.framework})")
    table.add_column("Name")
    table.add_column("Purpose")
    table.add_column("Template")
    table.add_column("Arguments")
    for definition in definitions:
        table.add_row(
            definition.name,
            definition.purpose,
            definition.template,
            ", ".join(definition.required_arguments) or "-",
        )
    console.print(table)


@commands_app.command("prompt")
def commands_prompt(framework: FrameworkOption = None) -> None:
    """Print the markdown command listing used in agent prompts."""
    config = _build_config(framework=framework, project_root=None, events_file=None)
    executor = _create_executor(config)
    typer.echo(executor.commands_for_prompt())


@commands_app.command("run")
def commands_run(
    name: Annotated[str, typer.Argument(help="Registered command name.")],
    arg: Annotated[
        list[str] | None,
        typer.Option("--arg", help="Placeholder value as key=value (repeatable)."),
    ] = None,
    framework: FrameworkOption = None,
    project_root: ProjectRootOption = None,
    events_file: EventsFileOption = None,
) -> None:
    """Execute a registered command with placeholder arguments.

    Example:
        devloop commands run module-enable --arg module=views --framework drupal
    """
    config = _build_config(framework=framework, project_root=project_root, events_file=events_file)
    executor = _create_executor(config)
    result = executor.execute(name, _parse_args(arg))
    if result.output:
        typer.echo(result.output.rstrip("\n"))
    if not result.success:
        console.print(
            f"[red]{result.error_type or 'error'}[/red] {escape(result.error or '')}",
            highlight=False,
        )
        raise typer.Exit(code=1)
    console.print(f"{name} succeeded in {result.duration_seconds:.2f}s")


@hooks_app.command("show")
def hooks_show(
    phase_file: Annotated[Path, typer.Argument(help="Phase file with YAML frontmatter.")],
) -> None:
    """Show hooks declared in a phase file."""
    config = _build_config(framework=None, project_root=None, events_file=None)
    runner = PhaseHookExecutor(_create_executor(config))
    try:
        hooks = runner.load_phase_hooks(phase_file)
    except HookFileError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]", highlight=False)
        raise typer.Exit(code=1) from exc
    if hooks is None:
        console.print(f"No hooks declared in {phase_file}.")
        return
    table = Table(title=f"Hooks in {phase_file.name}")
    table.add_column("Event")
    table.add_column("#")
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("Continue on error")
    for event in HOOK_EVENT_CHOICES.values():
        for index, entry in enumerate(hooks.for_event(event), start=1):
            if isinstance(entry, dict):
                target = entry.get("cliCommand") or entry.get("command") or "-"
                table.add_row(
                    event,
                    str(index),
                    str(entry.get("type", "-")),
                    str(target),
                    "yes" if entry.get("continueOnError") is True else "no",
                )
            else:
                table.add_row(event, str(index), "invalid", str(entry), "no")
    console.print(table)


@hooks_app.command("run")
def hooks_run(
    phase_file: Annotated[Path, typer.Argument(help="Phase file with YAML frontmatter.")],
    event: Annotated[
        str,
        typer.Option("--event", help="Lifecycle event: start, complete, task."),
    ] = "start",
    prd_id: Annotated[str | None, typer.Option("--prd-id", help="PRD id for events.")] = None,
    phase_id: Annotated[
        str | None, typer.Option("--phase-id", help="Phase id for events.")
    ] = None,
    task_id: Annotated[str | None, typer.Option("--task-id", help="Task id for events.")] = None,
    framework: FrameworkOption = None,
    project_root: ProjectRootOption = None,
    events_file: EventsFileOption = None,
) -> None:
    """Run the hooks for one lifecycle event of a phase file."""
    hook_event = HOOK_EVENT_CHOICES.get(event)
    if hook_event is None:
        raise typer.BadParameter("event must be one of: start, complete, task.")
    config = _build_config(framework=framework, project_root=project_root, events_file=events_file)
    runner = PhaseHookExecutor(_create_executor(config))
    results = runner.execute_event(
        phase_file,
        hook_event,
        HookContext(prd_id=prd_id, phase_id=phase_id, task_id=task_id),
    )
    if not results:
        console.print(f"No {hook_event} hooks ran for {phase_file}.")
        return
    table = Table(title=f"{hook_event} hooks")
    table.add_column("#")
    table.add_column("Type")
    table.add_column("Description")
    table.add_column("Status")
    table.add_column("Seconds")
    for result in results:
        table.add_row(
            str(result.hook_index + 1) if result.hook_index >= 0 else "-",
            result.hook_type,
            escape(result.description),
            _status(result.success),
            f"{result.duration_seconds:.2f}",
        )
    console.print(table)
    failures = [result for result in results if not result.success]
    for result in failures:
        label = f"hook {result.hook_index + 1}" if result.hook_index >= 0 else result.hook_type
        console.print(
            f"[red]{label}[/red] {escape(result.error or '')}",
            highlight=False,
        )
    if failures:
        raise typer.Exit(code=1)


@app.command()
def recover(
    task_id: Annotated[str, typer.Argument(help="Task identifier owning the failure.")],
    message: Annotated[str, typer.Argument(help="Failure message to match.")],
    error_type: Annotated[
        str | None,
        typer.Option("--error-type", help="Classified error type, e.g. not_found."),
    ] = None,
    framework: FrameworkOption = None,
    project_root: ProjectRootOption = None,
    events_file: EventsFileOption = None,
) -> None:
    """Attempt automatic recovery for a task failure and print the suggested action."""
    config = _build_config(framework=framework, project_root=project_root, events_file=events_file)
    recovery = RecoverySystem(_create_executor(config))
    result = recovery.attempt_recovery(task_id, message, error_type)
    if result.strategy is None:
        console.print("No recovery strategy matched.")
        raise typer.Exit(code=1)
    console.print(f"Strategy: {result.strategy}")
    for command_result in result.commands_executed:
        console.print(
            f"- {command_result.command_name}: {_status(command_result.success)}",
            highlight=False,
        )
    console.print(f"Suggested action: {result.suggested_action}")
    if not result.success:
        if result.error:
            console.print(f"[red]{escape(result.error)}[/red]", highlight=False)
        raise typer.Exit(code=1)


@events_app.command("tail")
def events_tail(
    events_file: Annotated[
        Path | None,
        typer.Option("--events-file", help="JSONL events file (default: DEVLOOP_EVENTS_FILE)."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Number of events to show.")] = 20,
    event_type: Annotated[
        str | None, typer.Option("--type", help="Only show events of this type.")
    ] = None,
) -> None:
    """Print the most recent persisted engine events."""
    if limit <= 0:
        raise typer.BadParameter("limit must be greater than zero.")
    path = events_file
    if path is None:
        config = _build_config(framework=None, project_root=None, events_file=None)
        path = config.events_path
    if path is None:
        raise typer.BadParameter("Provide --events-file or set DEVLOOP_EVENTS_FILE.")
    events = load_events(path)
    if event_type is not None:
        events = [event for event in events if event.type == event_type]
    events = events[-limit:]
    if not events:
        console.print(f"No events recorded in {path}.")
        return
    table = Table(title=f"Events ({path.name})")
    table.add_column("Timestamp")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Task")
    table.add_column("Data")
    for event in events:
        table.add_row(
            event.timestamp,
            event.type,
            event.severity,
            event.task_id or "-",
            escape(json.dumps(event.data, sort_keys=True)),
        )
    console.print(table)


if __name__ == "__main__":
    app()
