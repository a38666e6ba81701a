"""Structured engine events with in-memory buffering and JSONL persistence."""

from __future__ import annotations

import itertools
import json
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from devloop.engine.security import redact_sensitive_text
from devloop.logging_utils import get_logger

LOGGER = get_logger("events")

EventSeverity = Literal["info", "warn", "error", "critical"]

ENGINE_EVENT_TYPES = {
    "cli:command_executed",
    "cli:command_failed",
    "hook:started",
    "hook:completed",
    "hook:failed",
    "recovery:attempted",
    "recovery:escalated",
    "validation:passed",
    "validation:failed",
}

DEFAULT_MAX_EVENTS = 1000


@dataclass(frozen=True)
class EngineEvent:
    """One structured event emitted by the engine."""

    id: str
    type: str
    timestamp: str
    severity: EventSeverity
    data: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None
    prd_id: str | None = None
    phase_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Serialize event to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "severity": self.severity,
            "data": self.data,
            "task_id": self.task_id,
            "prd_id": self.prd_id,
            "phase_id": self.phase_id,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> EngineEvent:
        """Rebuild an event from a persisted JSONL record."""
        event_id = payload.get("id")
        event_type = payload.get("type")
        if not isinstance(event_id, str) or not isinstance(event_type, str):
            raise ValueError("Event records require string 'id' and 'type'.")
        severity = payload.get("severity", "info")
        if severity not in {"info", "warn", "error", "critical"}:
            raise ValueError(f"Unknown event severity '{severity}'.")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("Expected event 'data' to be an object.")
        return cls(
            id=event_id,
            type=event_type,
            timestamp=str(payload.get("timestamp", "")),
            severity=severity,
            data=data,
            task_id=_optional_str(payload.get("task_id")),
            prd_id=_optional_str(payload.get("prd_id")),
            phase_id=_optional_str(payload.get("phase_id")),
        )


EventListener = Callable[[EngineEvent], None]


class EventStream:
    """Fire-and-forget event sink shared by the executor, hooks and recovery.

    Keeps the most recent ``max_events`` events for polling, notifies
    subscribers synchronously and, when ``persist_path`` is set, appends a
    redacted JSONL record per event.
    """

    def __init__(self, *, max_events: int = DEFAULT_MAX_EVENTS, persist_path: Path | None = None):
        if max_events <= 0:
            raise ValueError("max_events must be greater than zero.")
        self.max_events = max_events
        self.persist_path = persist_path
        self._events: list[EngineEvent] = []
        self._listeners: list[EventListener] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def emit(
        self,
        event_type: str,
        data: Mapping[str, Any] | None = None,
        *,
        severity: EventSeverity = "info",
        task_id: str | None = None,
        prd_id: str | None = None,
        phase_id: str | int | None = None,
    ) -> EngineEvent:
        """Record one event and fan it out to listeners."""
        with self._lock:
            sequence = next(self._counter)
            event = EngineEvent(
                id=f"evt-{int(time.time() * 1000)}-{sequence}",
                type=event_type,
                timestamp=datetime.now(tz=UTC).isoformat(),
                severity=severity,
                data=dict(data or {}),
                task_id=task_id,
                prd_id=prd_id,
                phase_id=str(phase_id) if phase_id is not None else None,
            )
            self._events.append(event)
            if len(self._events) > self.max_events:
                del self._events[: len(self._events) - self.max_events]
            listeners = list(self._listeners)

        if self.persist_path is not None:
            try:
                append_event(self.persist_path, event)
            except OSError as exc:
                LOGGER.warning("Could not persist event %s: %s", event.id, exc)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Event listener failed for %s", event.type)
        return event

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def poll(
        self,
        *,
        since: str | None = None,
        types: Iterable[str] | None = None,
        severity: Iterable[str] | None = None,
        task_id: str | None = None,
        prd_id: str | None = None,
        limit: int | None = None,
    ) -> list[EngineEvent]:
        """Return buffered events matching every supplied filter.

        ``since`` is an event id; only events after it are returned. An
        unknown id is ignored. ``limit`` keeps the most recent matches.
        """
        with self._lock:
            events = list(self._events)
        if since is not None:
            for index, event in enumerate(events):
                if event.id == since:
                    events = events[index + 1 :]
                    break
        if types:
            wanted_types = set(types)
            events = [event for event in events if event.type in wanted_types]
        if severity:
            wanted_severity = set(severity)
            events = [event for event in events if event.severity in wanted_severity]
        if task_id is not None:
            events = [event for event in events if event.task_id == task_id]
        if prd_id is not None:
            events = [event for event in events if event.prd_id == prd_id]
        if limit is not None and limit > 0:
            events = events[-limit:]
        return events

    def latest(self, count: int = 10) -> list[EngineEvent]:
        """Return the last ``count`` events."""
        with self._lock:
            return list(self._events[-count:]) if count > 0 else []

    def clear(self) -> None:
        """Drop all buffered events."""
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


def append_event(path: Path, event: EngineEvent) -> None:
    """Append one event as a redacted JSONL record."""
    path.parent.mkdir(parents=True, exist_ok=True)
    sanitized = _sanitize(event.to_dict())
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(sanitized, ensure_ascii=True, default=str))
        handle.write("\n")


def load_events(path: Path) -> list[EngineEvent]:
    """Load persisted events, skipping blank or malformed lines."""
    events: list[EngineEvent] = []
    if not path.exists() or not path.is_file():
        return events
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            continue
        if not isinstance(payload, dict):
            continue
        try:
            events.append(EngineEvent.from_dict(payload))
        except ValueError:
            continue
    return events


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _sanitize(value: Any) -> Any:
    """Recursively redact sensitive text in event payloads."""
    if isinstance(value, str):
        return redact_sensitive_text(value)
    if isinstance(value, list):
        return [_sanitize(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _sanitize(item) for key, item in value.items()}
    return value
