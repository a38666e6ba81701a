"""Django commands run through manage.py."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from devloop.engine.frameworks.base import FrameworkPlugin

DJANGO_COMMANDS: tuple[dict[str, Any], ...] = (
    {
        "name": "cache-rebuild",
        "template": (
            "python manage.py shell -c "
            "\"from django.core.cache import cache; cache.clear()\""
        ),
        "purpose": "cache-clear",
        "description": "Clear the default Django cache backend.",
        "idempotent": True,
    },
    {
        "name": "health-check",
        "template": "python manage.py check",
        "purpose": "health-check",
        "description": "Run the Django system check framework.",
        "idempotent": True,
    },
    {
        "name": "code-check",
        "template": "python manage.py check --deploy --fail-level WARNING",
        "purpose": "code-check",
        "description": "Run deployment checks and fail on warnings.",
        "idempotent": True,
    },
    {
        "name": "config-import",
        "template": "python manage.py migrate --noinput",
        "purpose": "config-import",
        "description": "Apply pending database migrations.",
        "timeout_seconds": 300,
        "requires_confirmation": True,
    },
    {
        "name": "scaffold",
        "template": "python manage.py startapp {app}",
        "purpose": "scaffold",
        "description": "Create a new Django app skeleton.",
        "placeholders": ["app"],
        "example": "python manage.py startapp billing",
    },
    {
        "name": "test-run",
        "template": "python manage.py test {label}",
        "purpose": "test-run",
        "description": "Run the test suite for an app label or module.",
        "placeholders": ["label"],
        "timeout_seconds": 600,
        "idempotent": True,
    },
)


class DjangoPlugin(FrameworkPlugin):
    """Django project with a manage.py at the project root."""

    framework_id = "django"
    description = "Django via manage.py."

    def command_payloads(self) -> Iterable[Mapping[str, Any]]:
        return DJANGO_COMMANDS
