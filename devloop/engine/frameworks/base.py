"""Framework plugin contract for supplying CLI command definitions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from devloop.engine.models import CommandDefinition


class FrameworkPlugin(ABC):
    """Supplies the static command table for one target ecosystem."""

    framework_id: str
    description: str

    @abstractmethod
    def command_payloads(self) -> Iterable[Mapping[str, Any]]:
        """Return raw command definitions for this framework."""

    def cli_commands(self) -> list[CommandDefinition]:
        """Return validated command definitions for registration."""
        return [CommandDefinition.from_dict(payload) for payload in self.command_payloads()]
