"""Redaction of secrets before tool parameters or diagnostics reach logs."""

from __future__ import annotations

from typing import Any, Mapping

_SENSITIVE_KEY_TERMS = (
    "api_key",
    "apikey",
    "secret",
    "password",
    "passwd",
    "authorization",
    "bearer",
    "private_key",
    "privatekey",
    "access_key",
    "accesskey",
    "credential",
    "session",
    "jwt",
    "auth",
)

_SENSITIVE_VALUE_PREFIXES = (
    "sk-",
    "rk-",
    "ghp_",
    "github_pat_",
    "xoxb-",
    "xoxa-",
)

REDACTED = "[redacted]"


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def is_sensitive_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    s = value.strip()
    # JWT-shaped
    if s.count(".") == 2 and len(s) >= 24 and " " not in s:
        return True
    if s.lower().startswith("bearer "):
        return True
    if any(s.startswith(prefix) for prefix in _SENSITIVE_VALUE_PREFIXES):
        return True
    return "-----BEGIN" in s


def redact_value(key: str | None, value: Any) -> Any:
    """Redact secrets while keeping amounts, recipients and other primitives readable."""
    if value == REDACTED:
        return REDACTED
    if key is not None and is_sensitive_key(key):
        return REDACTED
    if isinstance(value, str):
        return REDACTED if is_sensitive_value(value) else value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        return [redact_value(None, v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): redact_value(str(k), v) for k, v in value.items()}
    return f"<{type(value).__name__}>"


def redact_params(params: Mapping[str, Any]) -> dict[str, Any]:
    return {k: redact_value(k, v) for k, v in params.items()}


def redact_text(text: str, secrets: tuple[str, ...]) -> str:
    """Replace literal occurrences of known secrets inside free text."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text
