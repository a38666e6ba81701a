"""In-process counters for command execution and recovery.

Instances are owned by one long-lived executor or recovery system and passed
explicitly to whoever needs to read them. Nothing here is persisted.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from devloop.engine.models import ExecutionResult


@dataclass
class CommandMetrics:
    """Counters keyed by purpose category and command name."""

    commands_executed: int = 0
    commands_by_purpose: Counter[str] = field(default_factory=Counter)
    commands_by_name: Counter[str] = field(default_factory=Counter)
    total_execution_seconds: float = 0.0
    failures_total: int = 0
    failures_by_command: Counter[str] = field(default_factory=Counter)
    failures_by_error_type: Counter[str] = field(default_factory=Counter)

    @property
    def successful(self) -> int:
        """Number of successful invocations."""
        return self.commands_executed - self.failures_total

    @property
    def success_rate(self) -> float:
        """Successful invocations divided by total, or 0.0 before any run."""
        if self.commands_executed == 0:
            return 0.0
        return self.successful / self.commands_executed

    @property
    def avg_execution_seconds(self) -> float:
        """Mean duration of successful invocations."""
        if self.successful == 0:
            return 0.0
        return self.total_execution_seconds / self.successful

    def record_success(self, command_name: str, purpose: str, duration_seconds: float) -> None:
        """Count one successful invocation."""
        self._count(command_name, purpose)
        self.total_execution_seconds += duration_seconds

    def record_failure(self, command_name: str, purpose: str, error_type: str) -> None:
        """Count one failed invocation under its classified error type."""
        self._count(command_name, purpose)
        self.failures_total += 1
        self.failures_by_command[command_name] += 1
        self.failures_by_error_type[error_type] += 1

    def reset(self) -> None:
        """Zero every counter."""
        self.commands_executed = 0
        self.commands_by_purpose.clear()
        self.commands_by_name.clear()
        self.total_execution_seconds = 0.0
        self.failures_total = 0
        self.failures_by_command.clear()
        self.failures_by_error_type.clear()

    def to_dict(self) -> dict[str, object]:
        """Serialize a snapshot of the counters."""
        return {
            "commands_executed": self.commands_executed,
            "commands_by_purpose": dict(self.commands_by_purpose),
            "commands_by_name": dict(self.commands_by_name),
            "success_rate": self.success_rate,
            "avg_execution_seconds": self.avg_execution_seconds,
            "total_execution_seconds": self.total_execution_seconds,
            "failures": {
                "total": self.failures_total,
                "by_command": dict(self.failures_by_command),
                "by_error_type": dict(self.failures_by_error_type),
            },
        }

    def _count(self, command_name: str, purpose: str) -> None:
        self.commands_executed += 1
        self.commands_by_purpose[purpose] += 1
        self.commands_by_name[command_name] += 1


@dataclass
class OutcomeCounter:
    """Attempts and successes for one strategy or command."""

    attempts: int = 0
    successes: int = 0

    def to_dict(self) -> dict[str, int]:
        """Serialize counter values."""
        return {"attempts": self.attempts, "successes": self.successes}


@dataclass
class RecoveryMetrics:
    """Effectiveness counters for recovery attempts."""

    total_attempts: int = 0
    successful_recoveries: int = 0
    failed_recoveries: int = 0
    by_strategy: dict[str, OutcomeCounter] = field(default_factory=dict)
    by_command: dict[str, OutcomeCounter] = field(default_factory=dict)
    total_recovery_seconds: float = 0.0

    @property
    def avg_recovery_seconds(self) -> float:
        """Mean wall-clock duration per recovery attempt."""
        if self.total_attempts == 0:
            return 0.0
        return self.total_recovery_seconds / self.total_attempts

    def record(
        self,
        strategy_name: str,
        commands: Iterable[ExecutionResult],
        *,
        success: bool,
        duration_seconds: float,
    ) -> None:
        """Record one completed recovery attempt."""
        self.total_attempts += 1
        if success:
            self.successful_recoveries += 1
        else:
            self.failed_recoveries += 1
        strategy_counter = self.by_strategy.setdefault(strategy_name, OutcomeCounter())
        strategy_counter.attempts += 1
        if success:
            strategy_counter.successes += 1
        for result in commands:
            command_counter = self.by_command.setdefault(result.command_name, OutcomeCounter())
            command_counter.attempts += 1
            if result.success:
                command_counter.successes += 1
        self.total_recovery_seconds += duration_seconds

    def reset(self) -> None:
        """Zero every counter."""
        self.total_attempts = 0
        self.successful_recoveries = 0
        self.failed_recoveries = 0
        self.by_strategy.clear()
        self.by_command.clear()
        self.total_recovery_seconds = 0.0

    def to_dict(self) -> dict[str, object]:
        """Serialize a snapshot of the counters."""
        return {
            "total_attempts": self.total_attempts,
            "successful_recoveries": self.successful_recoveries,
            "failed_recoveries": self.failed_recoveries,
            "by_strategy": {name: item.to_dict() for name, item in self.by_strategy.items()},
            "by_command": {name: item.to_dict() for name, item in self.by_command.items()},
            "avg_recovery_seconds": self.avg_recovery_seconds,
            "total_recovery_seconds": self.total_recovery_seconds,
        }
