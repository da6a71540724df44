from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..types import AuditEntry


@runtime_checkable
class AuditLedger(Protocol):
    """Append-only record of finalized claims.

    Implementations must:
    - make each append durable before returning
    - read a missing or corrupt store as empty instead of raising
    - count only ``approved`` entries towards the daily total
    """

    def add_entry(self, entry: AuditEntry) -> None:
        """Append a single entry."""

    def get_all_entries(self) -> list[AuditEntry]:
        """Return the full history in append order."""

    def get_daily_total(self, date: str) -> float:
        """Sum approved amounts whose UTC timestamp date equals ``date`` (YYYY-MM-DD)."""
