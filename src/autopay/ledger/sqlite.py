from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from ..types import AuditEntry, ClaimStatus
from .common import daily_total, parse_entry
from .errors import LedgerWriteError, sanitize_exception

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SQLiteAuditLedger:
    """Audit ledger backed by SQLite (WAL, synchronous=FULL).

    Entries are stored as their JSON line, with status and UTC date columns kept
    alongside so that the daily total can be filtered in SQL.
    """

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))

    def add_entry(self, entry: AuditEntry) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with _connect(self.path) as conn:
                _ensure_schema(conn)
                conn.execute(
                    "INSERT INTO audit_log (entry_json, status, entry_date) VALUES (?, ?, ?)",
                    (entry.to_json_line(), entry.status.value, entry.date),
                )
                conn.commit()
        except (sqlite3.Error, OSError) as exc:
            raise LedgerWriteError(sanitize_exception(exc)) from exc

    def get_all_entries(self) -> list[AuditEntry]:
        rows = self._select("SELECT id, entry_json FROM audit_log ORDER BY id ASC", ())
        entries = (parse_entry(raw, position=row_id) for row_id, raw in rows)
        return [entry for entry in entries if entry is not None]

    def get_daily_total(self, date: str) -> float:
        rows = self._select(
            "SELECT id, entry_json FROM audit_log WHERE status = ? AND entry_date = ? ORDER BY id ASC",
            (ClaimStatus.APPROVED.value, date),
        )
        entries = (parse_entry(raw, position=row_id) for row_id, raw in rows)
        return daily_total((entry for entry in entries if entry is not None), date)

    def _select(self, query: str, params: tuple[str, ...]) -> list[tuple[int, str]]:
        if not self.path.exists():
            return []
        try:
            with _connect(self.path) as conn:
                _ensure_schema(conn)
                return [(int(row[0]), str(row[1])) for row in conn.execute(query, params)]
        except sqlite3.Error as exc:
            _logger.warning("audit ledger unreadable, treating as empty: %s", exc)
            return []


def _connect(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=FULL")
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entry_json TEXT NOT NULL,
            status TEXT NOT NULL,
            entry_date TEXT NOT NULL
        )
        """
    )
