from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from autopay.ledger.errors import LedgerWriteError
from autopay.ledger.jsonl import JSONLAuditLedger
from autopay.types import AuditEntry, ClaimStatus


def _entry(amount: float, status: ClaimStatus = ClaimStatus.APPROVED, **extra: object) -> AuditEntry:
    return AuditEntry(
        timestamp=datetime(2026, 1, 25, 12, 0, tzinfo=timezone.utc),
        status=status,
        amount=amount,
        purpose="Lunch",
        **extra,
    )


def test_missing_file_reads_as_empty(tmp_path: Path) -> None:
    ledger = JSONLAuditLedger(tmp_path / "audit-log.jsonl")

    assert ledger.get_all_entries() == []
    assert ledger.get_daily_total("2026-01-25") == 0.0


def test_append_preserves_order_and_fields(tmp_path: Path) -> None:
    ledger = JSONLAuditLedger(tmp_path / "audit-log.jsonl")
    first = _entry(0.25, recipient="0xABC", tx_id="tx-1")
    second = _entry(1.00, ClaimStatus.REJECTED, reason="Amount $1.00 exceeds per-transaction maximum of $0.50.")

    ledger.add_entry(first)
    ledger.add_entry(second)

    assert ledger.get_all_entries() == [first, second]


def test_stored_lines_omit_unset_fields_and_use_tx_id_alias(tmp_path: Path) -> None:
    path = tmp_path / "audit-log.jsonl"
    JSONLAuditLedger(path).add_entry(_entry(0.25, tx_id="tx-1"))

    record = json.loads(path.read_text(encoding="utf-8").splitlines()[0])

    assert record == {
        "timestamp": "2026-01-25T12:00:00Z",
        "status": "approved",
        "amount": 0.25,
        "purpose": "Lunch",
        "txId": "tx-1",
    }


def test_daily_total_counts_only_approved(tmp_path: Path) -> None:
    ledger = JSONLAuditLedger(tmp_path / "audit-log.jsonl")
    ledger.add_entry(_entry(0.10))
    ledger.add_entry(_entry(0.20))
    ledger.add_entry(_entry(0.40, ClaimStatus.REJECTED, reason="no"))
    ledger.add_entry(_entry(0.40, ClaimStatus.REVIEW, reason="check"))

    assert ledger.get_daily_total("2026-01-25") == pytest.approx(0.30)
    assert ledger.get_daily_total("2026-01-24") == 0.0


def test_corrupt_lines_are_skipped(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "audit-log.jsonl"
    ledger = JSONLAuditLedger(path)
    ledger.add_entry(_entry(0.10))
    with path.open("a", encoding="utf-8") as handle:
        handle.write("{not json}\n")
        handle.write('{"status": "approved"}\n')
    ledger.add_entry(_entry(0.20))

    with caplog.at_level(logging.WARNING):
        entries = ledger.get_all_entries()

    assert [entry.amount for entry in entries] == [0.10, 0.20]
    assert "corrupt audit record" in caplog.text


def test_undecodable_bytes_skip_only_the_damaged_line(tmp_path: Path) -> None:
    path = tmp_path / "audit-log.jsonl"
    ledger = JSONLAuditLedger(path)
    ledger.add_entry(_entry(0.10))
    with path.open("ab") as handle:
        handle.write(b"\xff\xfe garbage\n")
    ledger.add_entry(_entry(0.20))

    assert [entry.amount for entry in ledger.get_all_entries()] == [0.10, 0.20]
    assert ledger.get_daily_total("2026-01-25") == pytest.approx(0.30)


def test_append_after_partial_line_starts_a_new_line(tmp_path: Path) -> None:
    path = tmp_path / "audit-log.jsonl"
    path.write_text('{"timestamp": "2026-01-25T', encoding="utf-8")
    ledger = JSONLAuditLedger(path)

    ledger.add_entry(_entry(0.10))

    assert [entry.amount for entry in ledger.get_all_entries()] == [0.10]


def test_write_failure_raises_ledger_write_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    ledger = JSONLAuditLedger(blocker / "audit-log.jsonl")

    with pytest.raises(LedgerWriteError) as excinfo:
        ledger.add_entry(_entry(0.10))

    assert str(tmp_path) not in str(excinfo.value)
