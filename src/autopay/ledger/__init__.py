"""Audit ledger backends and renderings."""

from .base import AuditLedger
from .errors import LedgerWriteError
from .export import CSV_FIELDS, to_csv, to_json, to_ndjson
from .jsonl import JSONLAuditLedger
from .sqlite import SQLiteAuditLedger

__all__ = (
    "AuditLedger",
    "JSONLAuditLedger",
    "SQLiteAuditLedger",
    "LedgerWriteError",
    "CSV_FIELDS",
    "to_csv",
    "to_json",
    "to_ndjson",
)
