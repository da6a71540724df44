from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Iterable

from pydantic import ValidationError

from ..types import AuditEntry, ClaimStatus

_logger = logging.getLogger(__name__)


def parse_entry(raw: str, *, position: int) -> AuditEntry | None:
    """Parse one stored entry; corrupt records are skipped, never raised."""
    try:
        payload = json.loads(raw)
        return AuditEntry.model_validate(payload)
    except (json.JSONDecodeError, ValidationError, TypeError) as exc:
        _logger.warning("skipping corrupt audit record at %d: %s", position, exc.__class__.__name__)
        return None


def daily_total(entries: Iterable[AuditEntry], date: str) -> float:
    """Sum approved amounts for ``date`` without binary float drift."""
    total = sum(
        (
            Decimal(str(entry.amount))
            for entry in entries
            if entry.status is ClaimStatus.APPROVED and entry.date == date
        ),
        Decimal("0"),
    )
    return float(total)
