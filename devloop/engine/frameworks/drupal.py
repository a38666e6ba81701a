"""Drupal commands run through ddev and drush."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from devloop.engine.frameworks.base import FrameworkPlugin

DRUPAL_COMMANDS: tuple[dict[str, Any], ...] = (
    {
        "name": "cache-rebuild",
        "template": "ddev exec drush cr",
        "purpose": "cache-clear",
        "description": "Rebuild all Drupal caches, including the service container.",
        "example": "ddev exec drush cr",
        "timeout_seconds": 120,
        "idempotent": True,
    },
    {
        "name": "module-enable",
        "template": "ddev exec drush en {module} -y",
        "purpose": "module-enable",
        "description": "Enable a Drupal module and its dependencies.",
        "placeholders": ["module"],
        "example": "ddev exec drush en views_ui -y",
        "timeout_seconds": 180,
        "idempotent": True,
    },
    {
        "name": "module-disable",
        "template": "ddev exec drush pmu {module} -y",
        "purpose": "module-disable",
        "description": "Uninstall a Drupal module.",
        "placeholders": ["module"],
        "example": "ddev exec drush pmu views_ui -y",
        "timeout_seconds": 180,
        "requires_confirmation": True,
    },
    {
        "name": "service-check",
        "template": "ddev exec drush php:eval \"\\Drupal::service('{service}');\"",
        "purpose": "service-check",
        "description": "Check that a service id resolves in the container.",
        "placeholders": ["service"],
        "example": "ddev exec drush php:eval \"\\Drupal::service('entity_type.manager');\"",
        "idempotent": True,
    },
    {
        "name": "entity-check",
        "template": (
            "ddev exec drush php:eval "
            "\"\\Drupal::entityTypeManager()->getDefinition('{entity_type}');\""
        ),
        "purpose": "entity-check",
        "description": "Check that an entity type is defined.",
        "placeholders": ["entity_type"],
        "idempotent": True,
    },
    {
        "name": "config-export",
        "template": "ddev exec drush cex -y",
        "purpose": "config-export",
        "description": "Export active configuration to the sync directory.",
        "timeout_seconds": 120,
        "idempotent": True,
    },
    {
        "name": "config-import",
        "template": "ddev exec drush cim -y",
        "purpose": "config-import",
        "description": "Import configuration from the sync directory.",
        "timeout_seconds": 180,
        "requires_confirmation": True,
    },
    {
        "name": "code-check",
        "template": "ddev exec phpcs --standard=Drupal {path}",
        "purpose": "code-check",
        "description": "Run Drupal coding standards on a path.",
        "placeholders": ["path"],
        "idempotent": True,
    },
    {
        "name": "test-run",
        "template": "ddev exec phpunit {path}",
        "purpose": "test-run",
        "description": "Run PHPUnit tests under a path.",
        "placeholders": ["path"],
        "timeout_seconds": 600,
        "idempotent": True,
    },
    {
        "name": "health-check",
        "template": "ddev exec drush status --field=bootstrap",
        "purpose": "health-check",
        "description": "Report whether Drupal bootstraps successfully.",
        "idempotent": True,
    },
)


class DrupalPlugin(FrameworkPlugin):
    """Drupal site managed with ddev."""

    framework_id = "drupal"
    description = "Drupal via ddev + drush."

    def command_payloads(self) -> Iterable[Mapping[str, Any]]:
        return DRUPAL_COMMANDS
