"""Framework plugin catalog."""

from __future__ import annotations

from devloop.engine.frameworks.base import FrameworkPlugin
from devloop.engine.frameworks.django import DjangoPlugin
from devloop.engine.frameworks.drupal import DrupalPlugin
from devloop.engine.frameworks.generic import GenericPlugin
from devloop.engine.frameworks.react import ReactPlugin


def framework_catalog() -> dict[str, FrameworkPlugin]:
    """Return deterministic plugin catalog keyed by framework id."""
    plugins: list[FrameworkPlugin] = [
        GenericPlugin(),
        DrupalPlugin(),
        DjangoPlugin(),
        ReactPlugin(),
    ]
    return {plugin.framework_id: plugin for plugin in plugins}


def get_framework_plugin(framework_id: str) -> FrameworkPlugin:
    """Return the plugin registered under framework_id."""
    catalog = framework_catalog()
    plugin = catalog.get(framework_id)
    if plugin is None:
        allowed = ", ".join(sorted(catalog))
        raise ValueError(f"Unknown framework '{framework_id}'. Allowed: {allowed}")
    return plugin


__all__ = [
    "DjangoPlugin",
    "DrupalPlugin",
    "FrameworkPlugin",
    "GenericPlugin",
    "ReactPlugin",
    "framework_catalog",
    "get_framework_plugin",
]
