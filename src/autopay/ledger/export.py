"""Audit log renderings for the read API and the CLI."""

from __future__ import annotations

import csv
import io
import json
from typing import Iterable

from ..types import AuditEntry

CSV_FIELDS = ("timestamp", "status", "amount", "purpose", "recipient", "txId", "reason", "error")


def _csv_row(entry: AuditEntry) -> list[str]:
    payload = entry.to_payload()
    return [
        str(payload["timestamp"]),
        entry.status.value,
        f"{entry.amount:.2f}",
        entry.purpose or "",
        entry.recipient or "",
        entry.tx_id or "",
        entry.reason or "",
        entry.error or "",
    ]


def to_csv(entries: Iterable[AuditEntry]) -> str:
    """Header plus one fully quoted row per entry; embedded quotes are doubled."""
    rows = [",".join(CSV_FIELDS)]
    for entry in entries:
        buffer = io.StringIO()
        csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="").writerow(_csv_row(entry))
        rows.append(buffer.getvalue())
    return "\n".join(rows)


def to_json(entries: Iterable[AuditEntry]) -> str:
    return json.dumps([entry.to_payload() for entry in entries], ensure_ascii=False, indent=2)


def to_ndjson(entries: Iterable[AuditEntry]) -> str:
    return "".join(entry.to_json_line() + "\n" for entry in entries)
