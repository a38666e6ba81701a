"""Pattern-matched automatic recovery with per-task attempt ceilings."""

from __future__ import annotations

import re
import time
from collections.abc import Iterable

from devloop.engine.executor import CommandExecutor
from devloop.engine.frameworks import FrameworkPlugin
from devloop.engine.metrics import RecoveryMetrics
from devloop.engine.models import RecoveryResult, RecoveryStrategy
from devloop.engine.security import truncate
from devloop.logging_utils import get_logger

LOGGER = get_logger("recovery")

MODULE_COMMAND = "module-enable"
MODULE_ARGUMENT = "module"


def default_strategies() -> list[RecoveryStrategy]:
    """Built-in strategies, specific patterns first.

    Most known failures are stale container/cache state, so every built-in
    strategy starts with a cache rebuild. Config and patch failures need a
    code change afterwards and therefore never suggest a retry.
    """
    return [
        RecoveryStrategy(
            name="module-enable-recovery",
            pattern=re.compile(
                r"wrong.import.path|module.*not.*enabled|class.*not.*found|service.*not.*found",
                re.IGNORECASE,
            ),
            commands=("cache-rebuild",),
            max_attempts=2,
            retry_after_recovery=True,
            extract_module=re.compile(r"module[:\s]+['\"]?(\w+)['\"]?", re.IGNORECASE),
        ),
        RecoveryStrategy(
            name="service-recovery",
            pattern=re.compile(
                r"service.*not.*found|cannot.*get.*service|undefined.*service", re.IGNORECASE
            ),
            commands=("cache-rebuild",),
            max_attempts=2,
            retry_after_recovery=True,
        ),
        RecoveryStrategy(
            name="entity-recovery",
            pattern=re.compile(r"entity.*type.*not.*found|unknown.*entity.*type", re.IGNORECASE),
            commands=("cache-rebuild",),
            max_attempts=2,
            retry_after_recovery=True,
        ),
        RecoveryStrategy(
            name="config-recovery",
            pattern=re.compile(r"schema.*validation|config.*invalid|yaml.*error", re.IGNORECASE),
            commands=("cache-rebuild",),
            max_attempts=1,
            retry_after_recovery=False,
        ),
        RecoveryStrategy(
            name="patch-recovery",
            pattern=re.compile(
                r"patch.not.found|search.*string.*not.*found|exact.*match.*failed", re.IGNORECASE
            ),
            commands=("cache-rebuild",),
            max_attempts=1,
            retry_after_recovery=False,
        ),
    ]


class RecoverySystem:
    """Runs the first matching strategy for a failure, within its attempt budget.

    Strategies are tried in registration order and at most one strategy is
    attempted per call. Attempt counters are keyed by ``(task_id, strategy)``
    and are only cleared by ``reset_attempts`` or ``reset_metrics``.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        framework_plugin: FrameworkPlugin | None = None,
        strategies: Iterable[RecoveryStrategy] | None = None,
        include_default_strategies: bool = True,
        metrics: RecoveryMetrics | None = None,
    ) -> None:
        """Initialize with an executor and the strategy table.

        ``strategies`` are appended after the built-ins, so built-ins win
        ties unless ``include_default_strategies`` is False.
        """
        self.executor = executor
        self.metrics = metrics if metrics is not None else RecoveryMetrics()
        self._strategies: list[RecoveryStrategy] = []
        self._attempts: dict[tuple[str, str], int] = {}
        if framework_plugin is not None:
            executor.register_plugin(framework_plugin)
        if include_default_strategies:
            self._strategies.extend(default_strategies())
        for strategy in strategies or ():
            self.add_strategy(strategy)

    @property
    def strategies(self) -> tuple[RecoveryStrategy, ...]:
        """Strategies in match order."""
        return tuple(self._strategies)

    def add_strategy(self, strategy: RecoveryStrategy) -> None:
        """Append a strategy to the end of the match list."""
        self._strategies.append(strategy)
        LOGGER.debug("Added strategy: %s", strategy.name)

    def find_strategy(
        self, error_message: str, error_type: str | None = None
    ) -> RecoveryStrategy | None:
        """Return the first strategy whose pattern matches the failure text."""
        text = f"{error_type} {error_message}" if error_type else error_message
        for strategy in self._strategies:
            if strategy.matches(text):
                return strategy
        return None

    def attempt_count(self, task_id: str, strategy_name: str) -> int:
        """Attempts recorded for one task and strategy since the last reset."""
        return self._attempts.get((task_id, strategy_name), 0)

    def attempt_recovery(
        self,
        task_id: str,
        error_message: str,
        error_type: str | None = None,
    ) -> RecoveryResult:
        """Try to remediate a task failure and suggest the next action."""
        start = time.perf_counter()
        strategy = self.find_strategy(error_message, error_type)
        if strategy is None:
            LOGGER.debug("No matching strategy for: %s", truncate(error_message, 100))
            return RecoveryResult()

        key = (task_id, strategy.name)
        current = self._attempts.get(key, 0)
        if current >= strategy.max_attempts:
            LOGGER.info(
                "Max attempts (%d) reached for %s on task %s; escalating",
                strategy.max_attempts,
                strategy.name,
                task_id,
            )
            self.executor.events.emit(
                "recovery:escalated",
                {
                    "strategy": strategy.name,
                    "max_attempts": strategy.max_attempts,
                    "error_type": error_type or "unknown",
                },
                severity="warn",
                task_id=task_id,
            )
            return RecoveryResult(
                strategy=strategy.name,
                error=f"Max recovery attempts reached for {strategy.name}",
                suggested_action="escalate",
                ceiling_reached=True,
            )

        self._attempts[key] = current + 1
        LOGGER.info(
            "Attempting recovery %s for task %s (attempt %d/%d)",
            strategy.name,
            task_id,
            current + 1,
            strategy.max_attempts,
        )
        result = RecoveryResult(attempted=True, strategy=strategy.name)
        all_succeeded = True
        for command_name in strategy.commands:
            args: dict[str, str] = {}
            if strategy.extract_module is not None and self._needs_module(command_name):
                module = strategy.module_from(error_message)
                if module is None:
                    LOGGER.debug("Cannot extract module name; skipping %s", command_name)
                    continue
                args[MODULE_ARGUMENT] = module

            command_result = self.executor.execute(command_name, args)
            result.commands_executed.append(command_result)
            if not command_result.success:
                all_succeeded = False
                LOGGER.warning("Recovery command %s failed: %s", command_name, command_result.error)

        result.success = all_succeeded
        result.suggested_action = (
            "retry" if strategy.retry_after_recovery and all_succeeded else "escalate"
        )
        if not all_succeeded:
            result.error = "One or more recovery commands failed"

        duration = time.perf_counter() - start
        self.metrics.record(
            strategy.name,
            result.commands_executed,
            success=all_succeeded,
            duration_seconds=duration,
        )
        self.executor.events.emit(
            "recovery:attempted",
            {
                "strategy": strategy.name,
                "success": all_succeeded,
                "duration_seconds": duration,
                "commands_executed": len(result.commands_executed),
                "suggested_action": result.suggested_action,
                "error_type": error_type or "unknown",
            },
            severity="info" if all_succeeded else "warn",
            task_id=task_id,
        )
        LOGGER.info(
            "Recovery %s: %s (%.2fs)",
            "succeeded" if all_succeeded else "failed",
            strategy.name,
            duration,
        )
        return result

    def reset_attempts(self, task_id: str) -> None:
        """Clear every attempt counter for a task after it succeeds."""
        for key in [key for key in self._attempts if key[0] == task_id]:
            del self._attempts[key]

    def reset_metrics(self) -> None:
        """Zero recovery metrics and forget all attempt counters."""
        self.metrics.reset()
        self._attempts.clear()

    def _needs_module(self, command_name: str) -> bool:
        if command_name == MODULE_COMMAND:
            return True
        definition = self.executor.get_command(command_name)
        return definition is not None and MODULE_ARGUMENT in definition.required_arguments
