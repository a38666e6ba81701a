"""Tests for command and recovery counters."""

from __future__ import annotations

import pytest

from devloop.engine.metrics import CommandMetrics, RecoveryMetrics
from devloop.engine.models import ExecutionResult


def _result(name: str, *, success: bool) -> ExecutionResult:
    return ExecutionResult(
        success=success, output="", command=name, command_name=name, duration_seconds=0.1
    )


def test_command_metrics_snapshot() -> None:
    metrics = CommandMetrics()
    metrics.record_success("cache-rebuild", "cache-clear", 2.0)
    metrics.record_success("cache-rebuild", "cache-clear", 4.0)
    metrics.record_failure("test-run", "test-run", "timeout")

    snapshot = metrics.to_dict()

    assert snapshot["commands_executed"] == 3
    assert snapshot["commands_by_name"] == {"cache-rebuild": 2, "test-run": 1}
    assert snapshot["avg_execution_seconds"] == pytest.approx(3.0)
    assert snapshot["failures"] == {
        "total": 1,
        "by_command": {"test-run": 1},
        "by_error_type": {"timeout": 1},
    }


def test_recovery_metrics_track_strategy_and_command_outcomes() -> None:
    metrics = RecoveryMetrics()
    metrics.record(
        "service-recovery",
        [_result("cache-rebuild", success=True)],
        success=True,
        duration_seconds=1.0,
    )
    metrics.record(
        "service-recovery",
        [_result("cache-rebuild", success=False)],
        success=False,
        duration_seconds=3.0,
    )

    assert metrics.total_attempts == 2
    assert metrics.successful_recoveries == 1
    assert metrics.failed_recoveries == 1
    assert metrics.avg_recovery_seconds == pytest.approx(2.0)
    assert metrics.to_dict()["by_command"] == {"cache-rebuild": {"attempts": 2, "successes": 1}}

    metrics.reset()
    assert metrics.to_dict()["by_strategy"] == {}
    assert metrics.avg_recovery_seconds == 0.0
