"""Append-only JSONL audit ledger with file locking and fsync on every append."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..types import AuditEntry
from .common import daily_total, parse_entry
from .errors import LedgerWriteError, sanitize_exception
from .filelock import locked_file

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JSONLAuditLedger:
    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))

    def add_entry(self, entry: AuditEntry) -> None:
        """Append one entry; durable on disk before this returns."""
        line = entry.to_json_line()
        try:
            with locked_file(self.path) as handle:
                if _needs_separator(handle):
                    handle.write("\n")
                handle.write(line + "\n")
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            raise LedgerWriteError(sanitize_exception(exc)) from exc
        _logger.debug("audit entry appended status=%s amount=%.2f", entry.status.value, entry.amount)

    def get_all_entries(self) -> list[AuditEntry]:
        if not self.path.exists():
            return []
        try:
            with locked_file(self.path, shared=True) as handle:
                handle.seek(0)
                raw = handle.buffer.read()  # type: ignore[attr-defined]
            # Undecodable bytes become U+FFFD so only the damaged lines are skipped.
            lines = raw.decode("utf-8", errors="replace").splitlines()
        except OSError as exc:
            _logger.warning("audit ledger unreadable, treating as empty: %s", sanitize_exception(exc))
            return []
        entries: list[AuditEntry] = []
        for position, raw_line in enumerate(lines, start=1):
            if not raw_line.strip():
                continue
            entry = parse_entry(raw_line, position=position)
            if entry is not None:
                entries.append(entry)
        return entries

    def get_daily_total(self, date: str) -> float:
        return daily_total(self.get_all_entries(), date)


def _needs_separator(handle) -> bool:
    """True when a previous writer left a partial line without a newline."""
    size = handle.tell()
    if size == 0:
        return False
    fb = handle.buffer  # type: ignore[attr-defined]
    fb.seek(size - 1)
    last = fb.read(1)
    handle.seek(0, os.SEEK_END)
    return last != b"\n"
