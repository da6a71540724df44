from __future__ import annotations

from ..errors import AuditLogError


class LedgerWriteError(AuditLogError):
    """Raised when an append could not be made durable."""


def sanitize_exception(exc: Exception) -> str:
    """Return a safe error message without filesystem paths."""
    if isinstance(exc, OSError):
        parts: list[str] = [exc.__class__.__name__]
        if exc.errno is not None:
            parts.append(f"errno={exc.errno}")
        if exc.strerror:
            parts.append(exc.strerror)
        return " ".join(parts).strip()
    return str(exc)
