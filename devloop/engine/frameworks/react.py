"""React/Node commands run through npm scripts."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from devloop.engine.frameworks.base import FrameworkPlugin

REACT_COMMANDS: tuple[dict[str, Any], ...] = (
    {
        "name": "cache-rebuild",
        "template": "rm -rf node_modules/.cache",
        "purpose": "cache-clear",
        "description": "Drop the bundler cache directory.",
        "idempotent": True,
    },
    {
        "name": "code-check",
        "template": "npx tsc --noEmit",
        "purpose": "code-check",
        "description": "Type-check the project without emitting output.",
        "timeout_seconds": 300,
        "idempotent": True,
    },
    {
        "name": "test-run",
        "template": "npm test -- --watchAll=false {pattern}",
        "purpose": "test-run",
        "description": "Run tests matching a path pattern.",
        "placeholders": ["pattern"],
        "timeout_seconds": 600,
        "idempotent": True,
    },
    {
        "name": "health-check",
        "template": "npm run build --if-present",
        "purpose": "health-check",
        "description": "Verify that the production build succeeds.",
        "timeout_seconds": 600,
        "idempotent": True,
    },
)


class ReactPlugin(FrameworkPlugin):
    """React application driven by npm scripts."""

    framework_id = "react"
    description = "React via npm scripts."

    def command_payloads(self) -> Iterable[Mapping[str, Any]]:
        return REACT_COMMANDS
