"""Fallback plugin for projects without framework-specific commands."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from devloop.engine.frameworks.base import FrameworkPlugin


class GenericPlugin(FrameworkPlugin):
    """Registers no commands; hooks may still use raw shell commands."""

    framework_id = "generic"
    description = "No framework CLI; shell hooks only."

    def command_payloads(self) -> Iterable[Mapping[str, Any]]:
        return []
