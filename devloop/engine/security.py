"""Command safety checks and redaction for engine output."""

from __future__ import annotations

import re
from typing import Final


class SecurityError(RuntimeError):
    """Raised when a command matches a destructive pattern."""


DANGEROUS_COMMAND_PATTERNS: Final[tuple[str, ...]] = (
    r"\brm\s+-rf\s+[/\\](?:\s|$)",
    r"\brm\s+-rf\s+~",
    r"\brm\s+-rf\s+\.\.",
    r"\bmkfs\b",
    r"\bdd\s+if=.+\s+of=/dev/",
    r"\bshutdown\b",
    r"\bpoweroff\b",
    r":\(\)\s*\{\s*:\|:&\s*\};:",
    r"\bdrush\b.*\bsql-drop\b",
    r"\bdropdb\b",
)

POTENTIAL_SECRET_PATTERNS: Final[tuple[tuple[str, str], ...]] = (
    ("openai_api_key", r"sk-[A-Za-z0-9]{20,}"),
    ("anthropic_api_key", r"sk-ant-[A-Za-z0-9_-]{20,}"),
    ("github_token", r"gh[pousr]_[A-Za-z0-9]{20,}"),
    ("aws_access_key_id", r"AKIA[0-9A-Z]{16}"),
    ("bearer_token", r"(?i)bearer\s+[A-Za-z0-9._-]{16,}"),
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b([A-Z0-9_]*(?:TOKEN|SECRET|API[_-]?KEY|PASSWORD)[A-Z0-9_]*)(\s*[:=]\s*)([^\s,;]+)"
)
_URL_CREDENTIALS_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)(\w+://[^:\s/]+:)[^@\s/]+@")


def is_command_safe(command: str) -> bool:
    """Return False if command is empty or appears destructive."""
    lowered = command.strip().lower()
    if not lowered:
        return False
    return not any(re.search(pattern, lowered) for pattern in DANGEROUS_COMMAND_PATTERNS)


def ensure_command_safe(command: str) -> None:
    """Raise SecurityError when command fails the safety check."""
    if not is_command_safe(command):
        raise SecurityError(f"Permission denied: rejected unsafe command: {command}")


def redact_sensitive_text(text: str) -> str:
    """Replace secret-like values with redaction placeholders."""
    redacted = text
    for label, pattern in POTENTIAL_SECRET_PATTERNS:
        redacted = re.sub(pattern, f"[REDACTED:{label}]", redacted)
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(r"\1\2[REDACTED:value]", redacted)
    redacted = _URL_CREDENTIALS_PATTERN.sub(r"\1[REDACTED:value]@", redacted)
    return redacted


def truncate(text: str, limit: int = 200) -> str:
    """Trim text to limit characters for log lines and event payloads."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
